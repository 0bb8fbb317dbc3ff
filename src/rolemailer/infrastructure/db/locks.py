"""
Row-level locking helpers.

Uses SELECT ... FOR UPDATE (pessimistic locking) so a role transition and a
dispatch pass touching the same user serialize on that user's transition row.
SQLite ignores FOR UPDATE; it serializes writers on the whole database instead.

Must be used inside a transaction (a `session_scope()` block).
"""
from typing import Iterable

from sqlalchemy.orm import Session, Query

from .models import TransitionRecordORM, DispatchLeaseORM


def with_transition_lock(user_id: int, db: Session) -> Query:
    """
    Lock one user's transition row.

    Example:
        record = with_transition_lock(user_id, db).first()

    Returns a Query; call .first() to fetch the (possibly missing) row.
    """
    return db.query(TransitionRecordORM).filter(
        TransitionRecordORM.user_id == user_id
    ).with_for_update(nowait=False)


def lock_transitions(user_ids: Iterable[int], db: Session) -> Query:
    """Lock the transition rows of several users (batch marking)."""
    return db.query(TransitionRecordORM).filter(
        TransitionRecordORM.user_id.in_(list(user_ids))
    ).with_for_update(nowait=False)


def with_lease_lock(name: str, db: Session) -> Query:
    return db.query(DispatchLeaseORM).filter(
        DispatchLeaseORM.name == name
    ).with_for_update(nowait=False)
