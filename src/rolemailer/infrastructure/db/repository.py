# File: src/rolemailer/infrastructure/db/repository.py
"""
Repositories over the mailer tables. Each takes an open Session and never
commits; the caller's `session_scope()` owns the transaction.
"""

import logging
import secrets
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, delete, exists, select
from sqlalchemy.orm import Session

from rolemailer.domain.entities import (
    TransitionRecord,
    ProcessedEventRecord,
    UserIdentity,
)
from .locks import with_transition_lock, lock_transitions, with_lease_lock
from .models import (
    User,
    TransitionRecordORM,
    ProcessedEventORM,
    NonceORM,
    DispatchLeaseORM,
    HistoryEntry,
)

logger = logging.getLogger(__name__)


def generate_token(length: int) -> str:
    """Cryptographically random, URL-safe token of exactly `length` characters."""
    return secrets.token_urlsafe((length * 6 + 7) // 8)[:length]


# ==========================================================
# USER REPOSITORY
# ==========================================================
class UserRepository:
    """Repository for User rows."""
    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def add(self, email: str, display_name: str = "", login: str = "", role: str = "") -> User:
        user = User(email=email, display_name=display_name, login=login, role=role)
        self.session.add(user)
        self.session.flush()
        return user

    def identity(self, user_id: int) -> Optional[UserIdentity]:
        user = self.find_by_id(user_id)
        if user is None:
            return None
        return UserIdentity(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name or "",
            login=user.login or "",
            role=user.role or "",
        )


# ==========================================================
# TRANSITION LEDGER
# ==========================================================
class TransitionRepository:
    """At most one row per user: the latest role transition."""
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_entity(row: TransitionRecordORM) -> TransitionRecord:
        return TransitionRecord(
            user_id=row.user_id,
            old_role=row.old_role,
            new_role=row.new_role,
            change_timestamp=row.change_timestamp,
        )

    def get(self, user_id: int) -> Optional[TransitionRecord]:
        row = self.session.get(TransitionRecordORM, user_id)
        return self._to_entity(row) if row else None

    def replace(self, user_id: int, old_role: str, new_role: str, change_timestamp: int) -> TransitionRecord:
        """Overwrite the user's transition (or create it) under a row lock."""
        row = with_transition_lock(user_id, self.session).first()
        if row is None:
            row = TransitionRecordORM(user_id=user_id)
            self.session.add(row)
        row.old_role = old_role
        row.new_role = new_role
        row.change_timestamp = change_timestamp
        self.session.flush()
        return self._to_entity(row)

    def find_due(self, old_role: str, new_role: str, event_name: str, cutoff: int) -> List[Tuple[int, int]]:
        """
        (user_id, change_timestamp) of users who made the old_role -> new_role
        transition at or before `cutoff` and have not been processed for
        `event_name`. Ordered by user id.
        """
        already_processed = exists().where(
            and_(
                ProcessedEventORM.user_id == TransitionRecordORM.user_id,
                ProcessedEventORM.processed_event == event_name,
            )
        )
        stmt = (
            select(TransitionRecordORM.user_id, TransitionRecordORM.change_timestamp)
            .where(
                TransitionRecordORM.old_role == old_role,
                TransitionRecordORM.new_role == new_role,
                TransitionRecordORM.change_timestamp <= cutoff,
                ~already_processed,
            )
            .order_by(TransitionRecordORM.user_id)
        )
        return [(row.user_id, row.change_timestamp) for row in self.session.execute(stmt)]

    def locked_timestamps(self, user_ids: Iterable[int]) -> Dict[int, int]:
        """Current change_timestamp per user, holding row locks until commit."""
        ids = list(user_ids)
        if not ids:
            return {}
        return {row.user_id: row.change_timestamp for row in lock_transitions(ids, self.session).all()}


# ==========================================================
# PROCESSED EVENT LEDGER
# ==========================================================
class ProcessedEventRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int) -> List[ProcessedEventRecord]:
        rows = self.session.query(ProcessedEventORM).filter(
            ProcessedEventORM.user_id == user_id
        ).order_by(ProcessedEventORM.processed_event).all()
        return [ProcessedEventRecord(r.user_id, r.processed_event, bool(r.one_time)) for r in rows]

    def reset_recurring(self, user_id: int) -> int:
        """Forget every non one-time event for the user. Returns rows removed."""
        result = self.session.execute(
            delete(ProcessedEventORM).where(
                ProcessedEventORM.user_id == user_id,
                ProcessedEventORM.one_time.is_(False),
            )
        )
        return result.rowcount or 0

    def mark(self, event_name: str, user_ids: Iterable[int], one_time: bool) -> List[int]:
        """Delete-then-insert the (user, event) rows for a batch of users."""
        ids = sorted(set(user_ids))
        if not ids:
            return []
        self.session.execute(
            delete(ProcessedEventORM).where(
                ProcessedEventORM.processed_event == event_name,
                ProcessedEventORM.user_id.in_(ids),
            )
        )
        self.session.add_all(
            ProcessedEventORM(user_id=uid, processed_event=event_name, one_time=one_time)
            for uid in ids
        )
        self.session.flush()
        return ids


# ==========================================================
# NONCE LEDGER
# ==========================================================
class NonceRepository:
    def __init__(self, session: Session, length: int = 32):
        self.session = session
        self.length = length

    def get(self, user_id: int) -> Optional[str]:
        row = self.session.get(NonceORM, user_id)
        return row.nonce if row else None

    def find_user(self, token: str) -> Optional[int]:
        if not token:
            return None
        row = self.session.query(NonceORM).filter(NonceORM.nonce == token).first()
        return row.user_id if row else None

    def token_for(self, user_id: int) -> str:
        """
        Return the user's token, generating and storing one on first use.

        Raises IntegrityError when a concurrent writer stored one first; the
        caller retries in a fresh transaction and gets the stored token.
        """
        existing = self.get(user_id)
        if existing is not None:
            return existing

        token = generate_token(self.length)
        self.session.add(NonceORM(user_id=user_id, nonce=token))
        self.session.flush()
        logger.debug("Generated nonce for user %s.", user_id)
        return token


# ==========================================================
# DISPATCH LEASE
# ==========================================================
class LeaseRepository:
    """Durable, expiring mutual exclusion keyed by name."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, name: str) -> Optional[DispatchLeaseORM]:
        return self.session.get(DispatchLeaseORM, name)

    def acquire(self, name: str, holder: str, now: int, ttl_seconds: int) -> bool:
        """Take the lease unless an unexpired one exists, whoever holds it."""
        lease = with_lease_lock(name, self.session).first()
        if lease is None:
            # A concurrent first insert surfaces as IntegrityError at flush.
            self.session.add(DispatchLeaseORM(
                name=name, holder=holder, acquired_at=now, expires_at=now + ttl_seconds
            ))
            self.session.flush()
            return True

        if lease.expires_at > now:
            return False

        logger.warning("Taking over expired lease '%s' from %s.", name, lease.holder)
        lease.holder = holder
        lease.acquired_at = now
        lease.expires_at = now + ttl_seconds
        self.session.flush()
        return True

    def renew(self, name: str, holder: str, now: int, ttl_seconds: int) -> bool:
        """Push the expiry out; False once `holder` no longer owns the lease."""
        lease = with_lease_lock(name, self.session).first()
        if lease is None or lease.holder != holder:
            return False
        lease.expires_at = now + ttl_seconds
        self.session.flush()
        return True

    def release(self, name: str, holder: str) -> bool:
        result = self.session.execute(
            delete(DispatchLeaseORM).where(
                DispatchLeaseORM.name == name,
                DispatchLeaseORM.holder == holder,
            )
        )
        return bool(result.rowcount)


# ==========================================================
# HISTORY
# ==========================================================
class HistoryRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, user_id: int, category: str, message: str) -> HistoryEntry:
        entry = HistoryEntry(user_id=user_id, category=category, message=message)
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_user(self, user_id: int, limit: int = 50) -> List[HistoryEntry]:
        return (
            self.session.query(HistoryEntry)
            .filter(HistoryEntry.user_id == user_id)
            .order_by(HistoryEntry.id.desc())
            .limit(limit)
            .all()
        )
