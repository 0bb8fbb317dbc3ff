# File: src/rolemailer/application/services/nonce_service.py
"""
NonceLedger - one opaque, URL-safe token per user, generated on first need
and returned unchanged afterwards. Follow-up links carry the token so the
receiving page can identify the user without a login.
"""

import logging
from typing import Optional, Type

from sqlalchemy.exc import IntegrityError

from rolemailer.infrastructure.db.repository import NonceRepository
from rolemailer.infrastructure.db.uow import SessionScope

log = logging.getLogger(__name__)


class NonceLedger:
    def __init__(
        self,
        session_scope: SessionScope,
        length: int = 32,
        nonce_repo_class: Type[NonceRepository] = NonceRepository,
    ):
        self.session_scope = session_scope
        self.length = length
        self.nonce_repo_class = nonce_repo_class

    def token_for(self, user_id: int) -> str:
        try:
            with self.session_scope() as session:
                return self.nonce_repo_class(session, self.length).token_for(user_id)
        except IntegrityError:
            # Lost a first-insert race; the winner's token is authoritative.
            log.debug("Nonce insert for user %s collided, re-reading.", user_id)
            with self.session_scope() as session:
                return self.nonce_repo_class(session, self.length).token_for(user_id)

    def user_for_token(self, token: str) -> Optional[int]:
        with self.session_scope() as session:
            return self.nonce_repo_class(session, self.length).find_user(token)
