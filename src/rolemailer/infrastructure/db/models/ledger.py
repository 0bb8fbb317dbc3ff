# --- START OF FILE: src/rolemailer/infrastructure/db/models/ledger.py ---
"""
SQLAlchemy ORM models for the three mailer ledgers plus the dispatch lease.

- mailer_transitions: one row per user, the user's latest role transition.
- mailer_processed_events: (user_id, processed_event) pairs already dispatched.
  This table is what prevents duplicate sends across timer ticks.
- mailer_nonces: one opaque token per user, created on first need.
- mailer_dispatch_leases: run-level mutual exclusion for dispatch passes.
"""

from sqlalchemy import (
    Column, String, Boolean, BigInteger, ForeignKey
)
from .base import Base, UserId


class TransitionRecordORM(Base):
    __tablename__ = "mailer_transitions"

    user_id = Column(UserId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    old_role = Column(String(48), nullable=False)
    new_role = Column(String(48), nullable=False)
    # Epoch seconds
    change_timestamp = Column(BigInteger, nullable=False, index=True)

    def __repr__(self):
        return (
            f"<TransitionRecord(user_id={self.user_id}, "
            f"'{self.old_role}' -> '{self.new_role}', at={self.change_timestamp})>"
        )


class ProcessedEventORM(Base):
    __tablename__ = "mailer_processed_events"

    user_id = Column(UserId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    processed_event = Column(String(64), primary_key=True)
    one_time = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return (
            f"<ProcessedEvent(user_id={self.user_id}, event='{self.processed_event}', "
            f"one_time={self.one_time})>"
        )


class NonceORM(Base):
    __tablename__ = "mailer_nonces"

    user_id = Column(UserId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    nonce = Column(String(128), nullable=False, unique=True)

    def __repr__(self):
        return f"<Nonce(user_id={self.user_id})>"


class DispatchLeaseORM(Base):
    __tablename__ = "mailer_dispatch_leases"

    name = Column(String(64), primary_key=True)
    holder = Column(String(128), nullable=False)
    acquired_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<DispatchLease(name='{self.name}', holder='{self.holder}', expires_at={self.expires_at})>"
# --- END OF FILE ---
