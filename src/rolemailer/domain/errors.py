"""
Mailer exceptions.

Nothing raised from this hierarchy is fatal to the process: a failed pass is
logged and the next tick tries again.
"""


class MailerError(Exception):
    """Base class for all mailer errors."""
    pass


class ConfigurationError(MailerError):
    """A rule or event definition is missing or malformed."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class UnknownEventError(ConfigurationError):
    """A rule references an event that has no definition."""

    def __init__(self, event_name: str):
        self.event_name = event_name
        super().__init__(f"Unknown event {event_name}", source="events")


class UnknownActionError(ConfigurationError):
    def __init__(self, event_name: str, action):
        self.event_name = event_name
        self.action = action
        super().__init__(f"Event {event_name} unknown action {action}", source="events")


class RenderError(MailerError):
    """A template could not be rendered for one user."""

    def __init__(self, template_id: str, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"template {template_id}: {reason}")


class TransportError(MailerError):
    """A rendered message could not be delivered."""

    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"delivery to {recipient} failed: {reason}")


class UserNotFoundError(MailerError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class LeaseUnavailableError(MailerError):
    """Another pass currently holds the dispatch lease."""

    def __init__(self, name: str, holder: str | None = None):
        self.name = name
        self.holder = holder
        super().__init__(f"Lease {name} is held by {holder or 'another runner'}")
