# File: src/rolemailer/application/engine.py
"""
MailerEngine - the one object a host talks to.

Built once per process by `rolemailer.boot.build_services` with its ledgers
and collaborators injected. A host drives it either through the explicit
methods (`run_pass`, `record_transition`, `reload_rules`, `verify_token`) or
through `handle(kind, **payload)`, which routes a message to the same methods.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Sequence, Union

from rolemailer.application.rule_table import RuleTable
from rolemailer.application.services.dispatch_service import EventDispatcher
from rolemailer.application.services.lease_service import DispatchLease
from rolemailer.application.services.nonce_service import NonceLedger
from rolemailer.application.services.resolver_service import DueEventResolver
from rolemailer.application.services.transition_service import TransitionRecorder
from rolemailer.domain.entities import DispatchReport, Resolution, TransitionRecord
from rolemailer.domain.errors import ConfigurationError
from rolemailer.infrastructure.monitoring.metrics import PASSES, PASS_LATENCY

log = logging.getLogger(__name__)


def system_clock() -> int:
    return int(time.time())


class MailerEngine:
    def __init__(
        self,
        rule_loader: Callable[[], RuleTable],
        resolver: DueEventResolver,
        dispatcher: EventDispatcher,
        recorder: TransitionRecorder,
        nonce_ledger: NonceLedger,
        lease: Optional[DispatchLease] = None,
        clock: Callable[[], int] = system_clock,
        strict_config: bool = False,
    ):
        self.rule_loader = rule_loader
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.nonce_ledger = nonce_ledger
        self.lease = lease
        self.clock = clock
        self.strict_config = strict_config

        self._rule_table: Optional[RuleTable] = None
        self._rules_lock = threading.Lock()
        # Held for a whole pass; a second pass in this process backs off.
        self._pass_lock = threading.Lock()
        self._handlers: Dict[str, Callable[..., Any]] = {
            "tick": self.run_pass,
            "role_changed": self.record_transition,
            "reload_rules": self.reload_rules,
            "verify_token": self.verify_token,
        }

    # ---------------------------------------------------------------------
    # Configuration
    # ---------------------------------------------------------------------
    @property
    def rule_table(self) -> RuleTable:
        with self._rules_lock:
            if self._rule_table is None:
                self._rule_table = self.rule_loader()
                log.info(
                    "Rule table loaded: %s rule(s), %s event(s), %s error(s).",
                    len(self._rule_table.rules), len(self._rule_table.events), len(self._rule_table.errors),
                )
            return self._rule_table

    def reload_rules(self) -> RuleTable:
        with self._rules_lock:
            self._rule_table = None
        return self.rule_table

    # ---------------------------------------------------------------------
    # Timer tick
    # ---------------------------------------------------------------------
    def resolve(self, now: Optional[int] = None) -> Resolution:
        return self.resolver.resolve(self.rule_table, self.clock() if now is None else now)

    def run_pass(self, now: Optional[int] = None) -> DispatchReport:
        """One full resolve-and-dispatch pass, guarded against overlap."""
        now = self.clock() if now is None else now

        if not self._pass_lock.acquire(blocking=False):
            PASSES.labels(outcome="overlap").inc()
            return DispatchReport(now=now, skipped=True, reason="another dispatch pass is running")
        try:
            return self._guarded_pass(now)
        finally:
            self._pass_lock.release()

    def _guarded_pass(self, now: int) -> DispatchReport:
        if self.lease is not None:
            try:
                acquired = self.lease.acquire()
            except Exception as e:
                log.error(f"Could not acquire dispatch lease: {e}", exc_info=True)
                PASSES.labels(outcome="failed").inc()
                return DispatchReport(now=now, skipped=True, reason=f"lease error: {e}", errors=[str(e)])
            if not acquired:
                PASSES.labels(outcome="overlap").inc()
                return DispatchReport(now=now, skipped=True, reason="another dispatch pass holds the lease")

        started = time.perf_counter()
        try:
            report = self._run_pass(now)
        except Exception as e:
            log.error(f"Dispatch pass at {now} failed: {e}", exc_info=True)
            PASSES.labels(outcome="failed").inc()
            return DispatchReport(now=now, skipped=True, reason=f"pass failed: {e}", errors=[str(e)])
        finally:
            PASS_LATENCY.observe(time.perf_counter() - started)
            if self.lease is not None:
                try:
                    self.lease.release()
                except Exception as e:
                    log.error(f"Failed to release dispatch lease: {e}")

        PASSES.labels(outcome="skipped" if report.skipped else "completed").inc()
        return report

    def _run_pass(self, now: int) -> DispatchReport:
        rule_table = self.rule_table
        if self.strict_config and not rule_table.is_valid:
            try:
                rule_table.raise_for_errors()
            except ConfigurationError as e:
                log.error(f"Dispatch pass skipped: {e}")
                return DispatchReport(
                    now=now, skipped=True, reason="configuration errors",
                    errors=[str(err) for err in rule_table.errors],
                )

        resolution = self.resolver.resolve(rule_table, now)
        report = self.dispatcher.dispatch(
            rule_table, resolution.due, now,
            observed=resolution.observed,
            heartbeat=self.lease.renew if self.lease is not None else None,
        )
        report.errors[:0] = [str(err) for err in resolution.errors]

        if not resolution.is_empty:
            log.info(
                "✅ Pass at %s: %s message(s) sent, %s marker(s) written, %s error(s).",
                now, report.sent_count, report.marked_count, len(report.errors),
            )
        return report

    # ---------------------------------------------------------------------
    # Role changes & tokens
    # ---------------------------------------------------------------------
    def record_transition(
        self,
        user_id: int,
        new_role: str,
        previous_roles: Union[Sequence[str], str, None] = None,
    ) -> TransitionRecord:
        return self.recorder.record(user_id, new_role, previous_roles)

    def verify_token(self, token: str) -> Optional[int]:
        """The user a follow-up token belongs to, or None if it is not valid."""
        return self.nonce_ledger.user_for_token(token)

    # ---------------------------------------------------------------------
    # Message routing
    # ---------------------------------------------------------------------
    def handle(self, kind: str, **payload: Any) -> Any:
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValueError(f"Unknown mailer message '{kind}'")
        return handler(**payload)
