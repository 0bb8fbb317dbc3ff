# --- src/rolemailer/infrastructure/db/models/__init__.py ---
"""
Makes the 'models' directory a package and ensures all SQLAlchemy ORM models
are registered on Base.metadata for Alembic and the application.
"""

from .base import Base, UserId
from .auth import User
from .ledger import (
    TransitionRecordORM,
    ProcessedEventORM,
    NonceORM,
    DispatchLeaseORM,
)
from .history import HistoryEntry

__all__ = [
    "Base",
    "UserId",
    "User",
    "TransitionRecordORM",
    "ProcessedEventORM",
    "NonceORM",
    "DispatchLeaseORM",
    "HistoryEntry",
]
# --- END of models init ---
