# File: src/rolemailer/application/services/resolver_service.py
"""
DueEventResolver - decides which users are due for which events.

For every rule (old_role, new_role, event, delay) it selects the users whose
current transition matches, whose `change_timestamp + delay <= now`, and who
have no processed marker for the event. Results are unioned per event.
Ordering: events follow rule table order, users are ascending by id.
"""

import logging
from typing import Type

from rolemailer.application.rule_table import RuleTable
from rolemailer.domain.entities import Resolution
from rolemailer.infrastructure.db.repository import TransitionRepository
from rolemailer.infrastructure.db.uow import SessionScope

log = logging.getLogger(__name__)


class DueEventResolver:
    def __init__(
        self,
        session_scope: SessionScope,
        transition_repo_class: Type[TransitionRepository] = TransitionRepository,
    ):
        self.session_scope = session_scope
        self.transition_repo_class = transition_repo_class

    def resolve(self, rule_table: RuleTable, now: int) -> Resolution:
        """
        Compute event_name -> user ids newly eligible at `now`.

        Rules rejected while loading the table are not evaluated; their
        errors are carried on the returned Resolution.
        """
        resolution = Resolution(now=now, errors=list(rule_table.errors))

        with self.session_scope() as session:
            repo = self.transition_repo_class(session)
            for rule in rule_table.rules:
                rows = repo.find_due(
                    rule.old_role,
                    rule.new_role,
                    rule.event_name,
                    now - rule.delay_seconds,
                )
                if not rows:
                    continue
                users = resolution.due.setdefault(rule.event_name, [])
                for user_id, change_timestamp in rows:
                    resolution.observed[user_id] = change_timestamp
                    users.append(user_id)

        for event_name, users in resolution.due.items():
            resolution.due[event_name] = sorted(set(users))

        if resolution.due:
            log.info(
                "Resolver: %s",
                ", ".join(f"{event}={len(users)}" for event, users in resolution.due.items()),
            )
        else:
            log.debug("Resolver: nothing due at %s.", now)
        return resolution
