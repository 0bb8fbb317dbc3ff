"""User directory backed by the `users` table."""

from typing import Optional, Type

from rolemailer.domain.entities import UserIdentity
from .repository import UserRepository
from .uow import SessionScope


class SqlUserDirectory:
    def __init__(self, session_scope: SessionScope, user_repo_class: Type[UserRepository] = UserRepository):
        self.session_scope = session_scope
        self.user_repo_class = user_repo_class

    def lookup(self, user_id: int) -> Optional[UserIdentity]:
        with self.session_scope() as session:
            return self.user_repo_class(session).identity(user_id)
