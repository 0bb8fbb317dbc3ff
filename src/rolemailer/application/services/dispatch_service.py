# File: src/rolemailer/application/services/dispatch_service.py
"""
EventDispatcher - executes due events and advances the processed-event ledger.

Per event:
  - no definition            -> UnknownEventError, skipped, retried next tick
  - rejected definition      -> its ConfigurationError, skipped
  - action `ignore`          -> skipped, never marked
  - action `none`            -> every listed user marked, no side effect
  - action `send_message*`   -> render + send per user, then mark

Processed state is decided per user, never for the batch as a whole:
  - lookup or render failure -> user left unmarked, retried next tick
  - transport failure        -> marked only if `mark_processed_on_transport_failure`
  - sent                     -> marked

Marking is one transaction per event batch (delete-then-insert). Users whose
transition changed after resolution are left unmarked.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type

from rolemailer.application.rule_table import RuleTable
from rolemailer.application.services.nonce_service import NonceLedger
from rolemailer.domain.entities import (
    DispatchReport,
    EventAction,
    EventDefinition,
    EventOutcome,
    UserIdentity,
)
from rolemailer.domain.errors import (
    RenderError,
    TransportError,
    UnknownActionError,
    UnknownEventError,
    UserNotFoundError,
)
from rolemailer.domain.ports import AuditSink, MessageTransport, TemplateRenderer, UserDirectory
from rolemailer.infrastructure.db.repository import ProcessedEventRepository, TransitionRepository
from rolemailer.infrastructure.db.uow import SessionScope
from rolemailer.infrastructure.monitoring.metrics import DISPATCH_FAILURES, EVENTS_MARKED, MESSAGES_SENT

log = logging.getLogger(__name__)

AUDIT_CATEGORY = "MAILER"


class EventDispatcher:
    def __init__(
        self,
        session_scope: SessionScope,
        renderer: TemplateRenderer,
        transport: MessageTransport,
        directory: UserDirectory,
        nonce_ledger: NonceLedger,
        audit: Optional[AuditSink] = None,
        site_url: str = "",
        mark_processed_on_transport_failure: bool = True,
        workers: int = 1,
        processed_repo_class: Type[ProcessedEventRepository] = ProcessedEventRepository,
        transition_repo_class: Type[TransitionRepository] = TransitionRepository,
    ):
        self.session_scope = session_scope
        self.renderer = renderer
        self.transport = transport
        self.directory = directory
        self.nonce_ledger = nonce_ledger
        self.audit = audit
        self.site_url = site_url
        self.mark_processed_on_transport_failure = mark_processed_on_transport_failure
        self.workers = max(1, workers)
        self.processed_repo_class = processed_repo_class
        self.transition_repo_class = transition_repo_class

    # ---------------------------------------------------------------------
    # Batch entry point
    # ---------------------------------------------------------------------
    def dispatch(
        self,
        rule_table: RuleTable,
        due: Mapping[str, List[int]],
        now: int,
        observed: Optional[Mapping[int, int]] = None,
        heartbeat: Optional[Callable[[], None]] = None,
    ) -> DispatchReport:
        """
        Dispatch every due event. `heartbeat`, when given, runs before each
        event; an exception from it aborts the remaining events.
        """
        report = DispatchReport(now=now)
        items = [(event_name, list(user_ids)) for event_name, user_ids in due.items() if user_ids]

        if self.workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="mailer-dispatch") as pool:
                futures = [
                    pool.submit(self.dispatch_event, rule_table, event_name, user_ids, observed, heartbeat)
                    for event_name, user_ids in items
                ]
                outcomes = [f.result() for f in futures]
        else:
            outcomes = [
                self.dispatch_event(rule_table, event_name, user_ids, observed, heartbeat)
                for event_name, user_ids in items
            ]

        for outcome in outcomes:
            report.outcomes[outcome.event_name] = outcome
            if outcome.error:
                report.errors.append(outcome.error)
            for user_id, reason in outcome.failed.items():
                report.errors.append(f"{outcome.event_name} user {user_id}: {reason}")
        return report

    # ---------------------------------------------------------------------
    # One event
    # ---------------------------------------------------------------------
    def dispatch_event(
        self,
        rule_table: RuleTable,
        event_name: str,
        user_ids: List[int],
        observed: Optional[Mapping[int, int]] = None,
        heartbeat: Optional[Callable[[], None]] = None,
    ) -> EventOutcome:
        if heartbeat is not None:
            heartbeat()
        outcome = EventOutcome(event_name=event_name)
        definition = rule_table.event(event_name)

        if definition is None:
            error = rule_table.invalid_events.get(event_name) or UnknownEventError(event_name)
            return self._skip(outcome, str(error))

        action = definition.action
        if action == EventAction.IGNORE:
            log.debug("Event %s is ignored; %s user(s) stay pending.", event_name, len(user_ids))
            outcome.skipped = True
            return outcome

        if action == EventAction.NONE:
            to_mark = list(user_ids)
        elif isinstance(action, EventAction) and action.sends_message:
            to_mark = self._send_batch(definition, user_ids, outcome)
        else:
            return self._skip(outcome, str(UnknownActionError(event_name, action)))

        if to_mark:
            try:
                outcome.marked = self.mark_processed(event_name, to_mark, definition.one_time, observed)
            except Exception as e:
                log.error(f"Event {event_name}: marking {len(to_mark)} user(s) failed: {e}", exc_info=True)
                outcome.error = f"Event {event_name}: marking failed: {e}"
        return outcome

    def _skip(self, outcome: EventOutcome, message: str) -> EventOutcome:
        log.error(f"Mailer: {message}")
        outcome.skipped = True
        outcome.error = message
        DISPATCH_FAILURES.labels(event=outcome.event_name, kind="configuration").inc()
        return outcome

    def _send_batch(self, definition: EventDefinition, user_ids: Iterable[int], outcome: EventOutcome) -> List[int]:
        """Send to each user in isolation. Returns the users to mark processed."""
        to_mark: List[int] = []
        for user_id in user_ids:
            try:
                identity = self._send_to_user(definition, user_id)
            except (UserNotFoundError, RenderError) as e:
                self._fail(outcome, user_id, "render", e)
                continue
            except TransportError as e:
                self._fail(outcome, user_id, "transport", e)
                if self.mark_processed_on_transport_failure:
                    to_mark.append(user_id)
                continue
            except Exception as e:
                log.exception(f"Event {definition.event_name}: unexpected failure for user {user_id}")
                self._fail(outcome, user_id, "internal", e)
                continue

            outcome.sent.append(user_id)
            to_mark.append(user_id)
            MESSAGES_SENT.labels(event=definition.event_name).inc()
            self._audit(user_id, f"{definition.event_name} -> {identity.email}")
        return to_mark

    def _fail(self, outcome: EventOutcome, user_id: int, kind: str, error: Exception) -> None:
        log.error(f"Mailer: Event {outcome.event_name} {kind} error for user {user_id}: {error}")
        outcome.failed[user_id] = f"{kind}: {error}"
        DISPATCH_FAILURES.labels(event=outcome.event_name, kind=kind).inc()

    def _audit(self, user_id: int, message: str) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(user_id, AUDIT_CATEGORY, message)
        except Exception as e:
            log.error(f"Failed to write audit record for user {user_id}: {e}")

    # ---------------------------------------------------------------------
    # One user
    # ---------------------------------------------------------------------
    def _send_to_user(self, definition: EventDefinition, user_id: int) -> UserIdentity:
        identity = self.directory.lookup(user_id)
        if identity is None:
            raise UserNotFoundError(user_id)

        parameters = self.build_parameters(definition, identity)
        if definition.action == EventAction.SEND_MESSAGE_WITH_TOKEN:
            token = self.nonce_ledger.token_for(user_id)
            # Older templates read the token as `nonce`.
            parameters["token"] = token
            parameters["nonce"] = token

        body = self.renderer.render(definition.template_id, parameters)
        self.transport.send(identity.email, definition.subject, body, reply_to=definition.from_address)
        log.info("Event %s sent to user %s <%s>.", definition.event_name, user_id, identity.email)
        return identity

    def build_parameters(self, definition: EventDefinition, identity: UserIdentity) -> Dict[str, Any]:
        """Template parameters: event settings, then site and user fields on top."""
        parameters: Dict[str, Any] = dict(definition.extra_parameters)
        parameters.update(
            event_name=definition.event_name,
            template_id=definition.template_id,
            subject=definition.subject,
            from_address=definition.from_address,
            site_url=self.site_url,
            email_address=identity.email,
            display_name=identity.display_name,
            user_login=identity.login,
            role=identity.role,
        )
        return parameters

    # ---------------------------------------------------------------------
    # Ledger
    # ---------------------------------------------------------------------
    def mark_processed(
        self,
        event_name: str,
        user_ids: Iterable[int],
        one_time: bool,
        observed: Optional[Mapping[int, int]] = None,
    ) -> List[int]:
        """
        Record `event_name` as processed for the users, atomically.

        With `observed` (user -> change_timestamp seen by the resolver), users
        whose transition has since been replaced or removed are skipped: the
        event was due under a transition that no longer applies.
        """
        ids = sorted(set(user_ids))
        with self.session_scope() as session:
            if observed is not None:
                current = self.transition_repo_class(session).locked_timestamps(ids)
                stale = [
                    uid for uid in ids
                    if uid in observed and current.get(uid) != observed[uid]
                ]
                if stale:
                    log.warning(
                        "Event %s: %s user(s) changed role mid-pass, not marking: %s",
                        event_name, len(stale), stale,
                    )
                    ids = [uid for uid in ids if uid not in stale]
            marked = self.processed_repo_class(session).mark(event_name, ids, one_time)

        if marked:
            EVENTS_MARKED.labels(event=event_name).inc(len(marked))
            log.debug("Event %s marked processed for %s user(s) (one_time=%s).", event_name, len(marked), one_time)
        return marked
