"""
Baseline schema for the mailer: users, the three ledgers, the dispatch lease
and the history log.

Safe to re-run: tables that already exist are left untouched.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# --- Revision metadata ---
revision = '20261019_create_mailer_tables'
down_revision = None
branch_labels = None
depends_on = None

USER_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", USER_ID, primary_key=True, autoincrement=True),
            sa.Column("email", sa.String(255), nullable=False, index=True),
            sa.Column("display_name", sa.String(255), nullable=False, server_default=""),
            sa.Column("login", sa.String(60), nullable=False, server_default=""),
            sa.Column("role", sa.String(48), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        print("[MIGRATION] Created table: users")

    if "mailer_transitions" not in existing_tables:
        op.create_table(
            "mailer_transitions",
            sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("old_role", sa.String(48), nullable=False),
            sa.Column("new_role", sa.String(48), nullable=False),
            sa.Column("change_timestamp", sa.BigInteger(), nullable=False, index=True),
        )
        print("[MIGRATION] Created table: mailer_transitions")

    if "mailer_processed_events" not in existing_tables:
        op.create_table(
            "mailer_processed_events",
            sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("processed_event", sa.String(64), primary_key=True),
            sa.Column("one_time", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
        print("[MIGRATION] Created table: mailer_processed_events")

    if "mailer_nonces" not in existing_tables:
        op.create_table(
            "mailer_nonces",
            sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("nonce", sa.String(128), nullable=False, unique=True),
        )
        print("[MIGRATION] Created table: mailer_nonces")

    if "mailer_dispatch_leases" not in existing_tables:
        op.create_table(
            "mailer_dispatch_leases",
            sa.Column("name", sa.String(64), primary_key=True),
            sa.Column("holder", sa.String(128), nullable=False),
            sa.Column("acquired_at", sa.BigInteger(), nullable=False),
            sa.Column("expires_at", sa.BigInteger(), nullable=False),
        )
        print("[MIGRATION] Created table: mailer_dispatch_leases")

    if "mailer_history" not in existing_tables:
        op.create_table(
            "mailer_history",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
            sa.Column("category", sa.String(32), nullable=False, index=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        print("[MIGRATION] Created table: mailer_history")


def downgrade() -> None:
    for table_name in (
        "mailer_history",
        "mailer_dispatch_leases",
        "mailer_nonces",
        "mailer_processed_events",
        "mailer_transitions",
    ):
        op.drop_table(table_name)
    # `users` belongs to the host; left in place.
