# File: src/rolemailer/application/rule_table.py
"""
RuleTable - the parsed, validated form of the two configuration documents.

Transitions document (YAML):

    trial:                 # old role
      paid:                # new role
        welcome: 0         # event name: delay in seconds
        tips: 86400

Events document (YAML):

    welcome:
      action: send_message          # send_message | send_message_with_token | none | ignore
      one_time: false
      template_id: welcome.html
      subject: Welcome aboard
      from_address: support@example.com
      any_other_key: passed to the template

Loading never raises on bad entries. Every malformed rule or event becomes a
ConfigurationError on `RuleTable.errors` and is left out of the table, so the
rest of the configuration keeps working. Callers that want all-or-nothing use
`raise_for_errors()`.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from rolemailer.domain.entities import EventAction, EventDefinition, LEGACY_ACTION_NAMES, Rule
from rolemailer.domain.errors import ConfigurationError, UnknownActionError

log = logging.getLogger(__name__)

# Matches mailer_processed_events.processed_event
MAX_EVENT_NAME_LENGTH = 64


def _parse_action(value: Any) -> Optional[EventAction]:
    if value is None:
        return EventAction.SEND_MESSAGE
    name = str(value).strip().lower()
    if name in LEGACY_ACTION_NAMES:
        return LEGACY_ACTION_NAMES[name]
    try:
        return EventAction(name)
    except ValueError:
        return None


class EventSchema(BaseModel):
    """One entry of the events document."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    action: EventAction = EventAction.SEND_MESSAGE
    one_time: bool = Field(default=False, validation_alias=AliasChoices("one_time", "one-time"))
    template_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("template_id", "template"))
    subject: Optional[str] = None
    from_address: Optional[str] = Field(default=None, validation_alias=AliasChoices("from_address", "from"))

    @field_validator("action", mode="before")
    @classmethod
    def _v_action(cls, v):
        action = _parse_action(v)
        if action is None:
            raise ValueError(f"unknown action {v!r}")
        return action

    def missing_message_fields(self) -> List[str]:
        if not self.action.sends_message:
            return []
        return [
            name for name in ("template_id", "subject", "from_address")
            if not getattr(self, name)
        ]

    def to_definition(self, event_name: str) -> EventDefinition:
        return EventDefinition(
            event_name=event_name,
            action=self.action,
            one_time=self.one_time,
            template_id=self.template_id,
            subject=self.subject,
            from_address=self.from_address,
            extra_parameters=dict(self.model_extra or {}),
        )


@dataclass
class RuleTable:
    rules: List[Rule] = field(default_factory=list)
    events: Dict[str, EventDefinition] = field(default_factory=dict)
    errors: List[ConfigurationError] = field(default_factory=list)
    # Event names that were defined but rejected, with the reason.
    invalid_events: Dict[str, ConfigurationError] = field(default_factory=dict)

    # --- Loading ---

    @classmethod
    def from_documents(
        cls,
        transitions: Any,
        events: Any,
        known_roles: Optional[Iterable[str]] = None,
    ) -> "RuleTable":
        table = cls()
        roles = set(known_roles or [])
        table._load_transitions(transitions, roles)
        table._load_events(events)
        for error in table.errors:
            log.error(f"Mailer configuration error: {error}")
        return table

    @classmethod
    def from_yaml(
        cls,
        transitions_text: Optional[str],
        events_text: Optional[str],
        known_roles: Optional[Iterable[str]] = None,
    ) -> "RuleTable":
        pre_errors: List[ConfigurationError] = []
        documents = []
        for source, text in (("transitions", transitions_text), ("events", events_text)):
            try:
                documents.append(yaml.safe_load(text) if text else None)
            except yaml.YAMLError as e:
                pre_errors.append(ConfigurationError(f"invalid YAML: {e}", source=source))
                documents.append(None)
        table = cls.from_documents(documents[0], documents[1], known_roles=known_roles)
        for error in pre_errors:
            log.error(f"Mailer configuration error: {error}")
        table.errors[:0] = pre_errors
        return table

    @classmethod
    def from_files(
        cls,
        transitions_path: str,
        events_path: str,
        known_roles: Optional[Iterable[str]] = None,
    ) -> "RuleTable":
        texts: List[Optional[str]] = []
        missing: List[ConfigurationError] = []
        for source, path in (("transitions", transitions_path), ("events", events_path)):
            try:
                texts.append(Path(path).read_text(encoding="utf-8"))
            except OSError as e:
                missing.append(ConfigurationError(f"cannot read {path}: {e.strerror or e}", source=source))
                texts.append(None)
        table = cls.from_yaml(texts[0], texts[1], known_roles=known_roles)
        for error in missing:
            log.error(f"Mailer configuration error: {error}")
        table.errors[:0] = missing
        return table

    def _load_transitions(self, document: Any, roles: set) -> None:
        if document is None:
            return
        if not isinstance(document, dict):
            self.errors.append(ConfigurationError("document must be a mapping of old role to new roles", source="transitions"))
            return

        for old_role, new_roles in document.items():
            old_role = "" if old_role is None else str(old_role)
            if not isinstance(new_roles, dict):
                self.errors.append(ConfigurationError(
                    f"'{old_role}' must map new roles to events", source="transitions"
                ))
                continue
            for new_role, role_rules in new_roles.items():
                new_role = "" if new_role is None else str(new_role)
                where = f"{old_role} -> {new_role}"
                if not isinstance(role_rules, dict):
                    self.errors.append(ConfigurationError(
                        f"{where} must map event names to delays", source="transitions"
                    ))
                    continue
                unknown = [r for r in (old_role, new_role) if roles and r and r not in roles]
                for event_name, delay in role_rules.items():
                    source = f"transitions[{where}][{event_name}]"
                    if unknown:
                        self.errors.append(ConfigurationError(
                            f"unknown role {', '.join(repr(r) for r in unknown)}", source=source
                        ))
                        continue
                    error = self._check_rule(event_name, delay)
                    if error:
                        self.errors.append(ConfigurationError(error, source=source))
                        continue
                    self.rules.append(Rule(old_role, new_role, str(event_name), int(delay)))

    @staticmethod
    def _check_rule(event_name: Any, delay: Any) -> Optional[str]:
        if not isinstance(event_name, str) or not event_name.strip():
            return "event name must be a non-empty string"
        if len(event_name) > MAX_EVENT_NAME_LENGTH:
            return f"event name longer than {MAX_EVENT_NAME_LENGTH} characters"
        if delay is None:
            return "missing delay"
        if isinstance(delay, bool) or not isinstance(delay, int):
            return f"delay must be an integer number of seconds, got {delay!r}"
        if delay < 0:
            return f"delay must not be negative, got {delay}"
        return None

    def _load_events(self, document: Any) -> None:
        if document is None:
            return
        if not isinstance(document, dict):
            self.errors.append(ConfigurationError("document must be a mapping of event names", source="events"))
            return

        for event_name, data in document.items():
            event_name = str(event_name)
            source = f"events[{event_name}]"
            if data is None:
                data = {}
            if not isinstance(data, dict):
                self._reject(event_name, ConfigurationError("definition must be a mapping", source=source))
                continue
            action_value = data.get("action")
            if _parse_action(action_value) is None:
                self._reject(event_name, UnknownActionError(event_name, action_value))
                continue
            try:
                schema = EventSchema.model_validate(data)
            except ValidationError as e:
                reasons = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
                    for err in e.errors()
                )
                self._reject(event_name, ConfigurationError(reasons, source=source))
                continue
            missing = schema.missing_message_fields()
            if missing:
                self._reject(event_name, ConfigurationError(
                    f"requires {', '.join(missing)} for action {schema.action.value}", source=source
                ))
                continue
            self.events[event_name] = schema.to_definition(event_name)

    def _reject(self, event_name: str, error: ConfigurationError) -> None:
        self.errors.append(error)
        self.invalid_events[event_name] = error

    # --- Queries ---

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def event(self, event_name: str) -> Optional[EventDefinition]:
        return self.events.get(event_name)

    def raise_for_errors(self) -> None:
        if self.errors:
            summary = "; ".join(str(e) for e in self.errors)
            raise ConfigurationError(f"{len(self.errors)} configuration error(s): {summary}")
