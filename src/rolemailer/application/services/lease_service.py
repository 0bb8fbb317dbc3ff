# File: src/rolemailer/application/services/lease_service.py
"""
DispatchLease - keeps two dispatch passes from running at the same time.

The lease is a row in `mailer_dispatch_leases` with an expiry, so a runner
that died mid-pass blocks others only until the TTL runs out.
"""

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from typing import Callable, Generator, Optional, Type

from sqlalchemy.exc import IntegrityError

from rolemailer.domain.errors import LeaseUnavailableError
from rolemailer.infrastructure.db.repository import LeaseRepository
from rolemailer.infrastructure.db.uow import SessionScope

log = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class DispatchLease:
    def __init__(
        self,
        session_scope: SessionScope,
        clock: Callable[[], int],
        name: str = "dispatch",
        ttl_seconds: int = 1800,
        holder: Optional[str] = None,
        lease_repo_class: Type[LeaseRepository] = LeaseRepository,
    ):
        self.session_scope = session_scope
        self.clock = clock
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.holder = holder or default_holder()
        self.lease_repo_class = lease_repo_class

    def acquire(self) -> bool:
        try:
            with self.session_scope() as session:
                acquired = self.lease_repo_class(session).acquire(
                    self.name, self.holder, self.clock(), self.ttl_seconds
                )
        except IntegrityError:
            acquired = False
        if not acquired:
            log.warning("Lease '%s' is still held; %s backs off.", self.name, self.holder)
        return acquired

    def renew(self) -> None:
        """Extend the held lease by a full TTL. Raises LeaseUnavailableError once it was lost."""
        with self.session_scope() as session:
            renewed = self.lease_repo_class(session).renew(
                self.name, self.holder, self.clock(), self.ttl_seconds
            )
        if not renewed:
            raise LeaseUnavailableError(self.name, self.current_holder())

    def release(self) -> None:
        with self.session_scope() as session:
            released = self.lease_repo_class(session).release(self.name, self.holder)
        if not released:
            log.warning("Lease '%s' was no longer held by %s at release.", self.name, self.holder)

    def current_holder(self) -> Optional[str]:
        with self.session_scope() as session:
            lease = self.lease_repo_class(session).get(self.name)
            return lease.holder if lease else None

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        """Hold the lease for the duration of the block or raise LeaseUnavailableError."""
        if not self.acquire():
            raise LeaseUnavailableError(self.name, self.current_holder())
        try:
            yield
        finally:
            self.release()
