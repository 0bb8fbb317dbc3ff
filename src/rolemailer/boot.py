# File: src/rolemailer/boot.py
"""Builds and wires the mailer engine and its collaborators."""

import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from rolemailer.config import Settings, settings as default_settings
from rolemailer.application.engine import MailerEngine, system_clock
from rolemailer.application.rule_table import RuleTable
from rolemailer.application.services import (
    AuditService,
    DispatchLease,
    DueEventResolver,
    EventDispatcher,
    NonceLedger,
    TransitionRecorder,
)
from rolemailer.domain.ports import MessageTransport, TemplateRenderer, UserDirectory
from rolemailer.infrastructure.db.directory import SqlUserDirectory
from rolemailer.infrastructure.db.uow import SessionScope, session_scope as default_session_scope
from rolemailer.infrastructure.notify.email import SmtpTransport
from rolemailer.infrastructure.render.templates import JinjaTemplateRenderer
from rolemailer.infrastructure.sched.ticker import DispatchTicker

log = logging.getLogger(__name__)


def build_services(
    settings: Optional[Settings] = None,
    session_scope: Optional[SessionScope] = None,
    renderer: Optional[TemplateRenderer] = None,
    transport: Optional[MessageTransport] = None,
    directory: Optional[UserDirectory] = None,
    clock: Callable[[], int] = system_clock,
    rule_loader: Optional[Callable[[], RuleTable]] = None,
) -> Dict[str, Any]:
    """Build and wire all services. Any collaborator can be injected (tests do)."""
    settings = settings or default_settings
    session_scope = session_scope or default_session_scope
    log.info("Building mailer services...")
    services: Dict[str, Any] = {}

    try:
        services["renderer"] = renderer or JinjaTemplateRenderer(settings.TEMPLATE_DIRECTORY)
        services["transport"] = transport or SmtpTransport()
        services["directory"] = directory or SqlUserDirectory(session_scope)
        services["audit_service"] = AuditService(session_scope)
        services["nonce_ledger"] = NonceLedger(session_scope, length=settings.NONCE_LENGTH)

        services["resolver"] = DueEventResolver(session_scope)
        services["dispatcher"] = EventDispatcher(
            session_scope,
            renderer=services["renderer"],
            transport=services["transport"],
            directory=services["directory"],
            nonce_ledger=services["nonce_ledger"],
            audit=services["audit_service"],
            site_url=settings.SITE_URL,
            mark_processed_on_transport_failure=settings.MARK_PROCESSED_ON_TRANSPORT_FAILURE,
            workers=settings.DISPATCH_WORKERS,
        )
        services["recorder"] = TransitionRecorder(session_scope, clock=clock)
        services["lease"] = DispatchLease(session_scope, clock=clock, ttl_seconds=settings.DISPATCH_LEASE_SECONDS)

        rule_loader = rule_loader or partial(
            RuleTable.from_files,
            settings.TRANSITIONS_PATH,
            settings.EVENTS_PATH,
            known_roles=settings.known_roles(),
        )
        engine = MailerEngine(
            rule_loader=rule_loader,
            resolver=services["resolver"],
            dispatcher=services["dispatcher"],
            recorder=services["recorder"],
            nonce_ledger=services["nonce_ledger"],
            lease=services["lease"],
            clock=clock,
            strict_config=settings.STRICT_CONFIG,
        )
        services["engine"] = engine
        services["ticker"] = DispatchTicker(engine, interval_seconds=settings.DISPATCH_INTERVAL_SECONDS)

        log.info("✅ All mailer services built and wired successfully.")
        return services

    except Exception as e:
        log.critical(f"❌ Service building failed: {e}", exc_info=True)
        raise
