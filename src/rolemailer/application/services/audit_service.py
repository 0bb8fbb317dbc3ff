# src/rolemailer/application/services/audit_service.py
"""
AuditService - the mailer's history sink.

Writes one `mailer_history` row per noteworthy action (a message sent to a
user) and gives read-only access to a user's history for review.
"""

import logging
from typing import Any, Dict, List, Type

from rolemailer.infrastructure.db.repository import HistoryRepository
from rolemailer.infrastructure.db.uow import SessionScope

log = logging.getLogger(__name__)


class AuditService:
    def __init__(self, session_scope: SessionScope, history_repo_class: Type[HistoryRepository] = HistoryRepository):
        self.session_scope = session_scope
        self.history_repo_class = history_repo_class

    def record(self, user_id: int, category: str, message: str) -> None:
        with self.session_scope() as session:
            self.history_repo_class(session).add(user_id, category, message)
        log.info("[%s] user=%s %s", category, user_id, message)

    def history_for_user(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        with self.session_scope() as session:
            entries = self.history_repo_class(session).list_for_user(user_id, limit=limit)
            return [
                {
                    "timestamp": e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "N/A",
                    "category": e.category,
                    "message": e.message,
                }
                for e in entries
            ]
