# File: src/rolemailer/domain/entities.py
"""
Core entities of the mailer domain: transitions, rules, event definitions and
the outcome records produced by a dispatch pass.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# --- ENUMERATIONS ---

class EventAction(Enum):
    """What the dispatcher does with a due event."""
    SEND_MESSAGE = "send_message"
    SEND_MESSAGE_WITH_TOKEN = "send_message_with_token"
    NONE = "none"      # mark processed, no side effect
    IGNORE = "ignore"  # never mark processed

    @property
    def sends_message(self) -> bool:
        return self in (EventAction.SEND_MESSAGE, EventAction.SEND_MESSAGE_WITH_TOKEN)


# Spellings accepted from older configuration documents.
LEGACY_ACTION_NAMES = {
    "email": EventAction.SEND_MESSAGE,
    "email_with_nonce": EventAction.SEND_MESSAGE_WITH_TOKEN,
}


# --- ENTITIES ---

@dataclass(frozen=True)
class TransitionRecord:
    """The single, current role transition of a user."""
    user_id: int
    old_role: str
    new_role: str
    change_timestamp: int


@dataclass(frozen=True)
class ProcessedEventRecord:
    user_id: int
    event_name: str
    one_time: bool = False


@dataclass(frozen=True)
class Rule:
    """A transition old_role -> new_role makes `event_name` due `delay_seconds` later."""
    old_role: str
    new_role: str
    event_name: str
    delay_seconds: int


@dataclass(frozen=True)
class EventDefinition:
    event_name: str
    action: EventAction = EventAction.SEND_MESSAGE
    one_time: bool = False
    template_id: Optional[str] = None
    subject: Optional[str] = None
    from_address: Optional[str] = None
    extra_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserIdentity:
    """Identity fields handed to the template renderer."""
    user_id: int
    email: str
    display_name: str = ""
    login: str = ""
    role: str = ""


@dataclass
class Resolution:
    """
    Result of one resolver evaluation.

    `due` maps event name to the user ids newly eligible for it, in rule table
    order. `observed` keeps the change_timestamp each user had when it was read,
    so a transition recorded mid-pass can be detected before marking.
    """
    now: int
    due: Dict[str, List[int]] = field(default_factory=dict)
    observed: Dict[int, int] = field(default_factory=dict)
    errors: List[Exception] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.due


@dataclass
class EventOutcome:
    """Per-event bookkeeping of a dispatch."""
    event_name: str
    sent: List[int] = field(default_factory=list)
    marked: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class DispatchReport:
    now: int
    skipped: bool = False
    reason: Optional[str] = None
    outcomes: Dict[str, EventOutcome] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(len(o.sent) for o in self.outcomes.values())

    @property
    def marked_count(self) -> int:
        return sum(len(o.marked) for o in self.outcomes.values())
