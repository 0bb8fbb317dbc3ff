# File: src/rolemailer/domain/ports.py
"""
Interfaces of the collaborators the dispatch core depends on. Concrete adapters
live under `rolemailer.infrastructure` and are wired in `rolemailer.boot`.
"""

from typing import Any, Dict, Optional, Protocol

from .entities import UserIdentity


class TemplateRenderer(Protocol):
    def render(self, template_id: str, parameters: Dict[str, Any]) -> str:
        """Return the rendered body or raise RenderError."""
        ...


class MessageTransport(Protocol):
    def send(self, recipient: str, subject: str, body: str, reply_to: Optional[str] = None) -> None:
        """Deliver one message or raise TransportError."""
        ...


class UserDirectory(Protocol):
    def lookup(self, user_id: int) -> Optional[UserIdentity]:
        ...


class AuditSink(Protocol):
    def record(self, user_id: int, category: str, message: str) -> None:
        ...


class Clock(Protocol):
    def __call__(self) -> int:
        """Current time as integer epoch seconds."""
        ...
