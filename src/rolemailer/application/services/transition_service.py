# File: src/rolemailer/application/services/transition_service.py
"""
TransitionRecorder - reacts to a user's role change.

In one transaction it replaces the user's transition record and forgets the
user's recurring (non one-time) processed events, so those events become
eligible again under the new transition. One-time markers are left alone.
"""

import logging
from typing import Callable, Sequence, Type, Union

from rolemailer.domain.entities import TransitionRecord
from rolemailer.infrastructure.db.repository import ProcessedEventRepository, TransitionRepository
from rolemailer.infrastructure.db.uow import SessionScope
from rolemailer.infrastructure.monitoring.metrics import TRANSITIONS

log = logging.getLogger(__name__)


class TransitionRecorder:
    def __init__(
        self,
        session_scope: SessionScope,
        clock: Callable[[], int],
        transition_repo_class: Type[TransitionRepository] = TransitionRepository,
        processed_repo_class: Type[ProcessedEventRepository] = ProcessedEventRepository,
    ):
        self.session_scope = session_scope
        self.clock = clock
        self.transition_repo_class = transition_repo_class
        self.processed_repo_class = processed_repo_class

    def record(
        self,
        user_id: int,
        new_role: str,
        previous_roles: Union[Sequence[str], str, None],
    ) -> TransitionRecord:
        if isinstance(previous_roles, str):
            previous_roles = [previous_roles]
        old_role = previous_roles[-1] if previous_roles else ""
        now = self.clock()

        with self.session_scope() as session:
            # Transition row first: the dispatcher locks it before marking.
            record = self.transition_repo_class(session).replace(user_id, old_role, new_role, now)
            reset = self.processed_repo_class(session).reset_recurring(user_id)

        TRANSITIONS.inc()
        log.info(
            "User %s transitioned '%s' -> '%s' at %s (%s recurring event(s) reset).",
            user_id, old_role, new_role, now, reset,
        )
        return record
