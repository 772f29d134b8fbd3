"""Exception taxonomy for the dispatch pipeline.

ValidationError and its subclasses are raised synchronously at the boundary
and never reach the queue. Everything else is raised inside the core and is
either isolated (channel failures), absorbed (preference store failures) or
turned into an acknowledgment decision by the consumer.
"""

from typing import Optional


class NotifierError(Exception):
    """Base exception for the notification service."""

    code = "notifier_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(NotifierError):
    """Bad or missing job fields, unknown event types, invalid preferences."""

    code = "validation_error"


class UnresolvedEventType(ValidationError):
    """Event type does not map to any queue category."""

    code = "unresolved_event_type"

    def __init__(self, event_type: str, valid_types: list[str]):
        super().__init__(
            f"Unknown event type: {event_type}. Valid types: {', '.join(valid_types)}"
        )
        self.event_type = event_type


class InvalidPreferenceError(ValidationError):
    """A preference entry failed channel/category/flag validation."""

    code = "invalid_preference"


class ChannelDeliveryError(NotifierError):
    """A single channel send failed."""

    code = "channel_delivery_error"

    def __init__(self, channel: str, message: str):
        super().__init__(message)
        self.channel = channel


class PreferenceStoreError(NotifierError):
    """Preference cache or store could not be read."""

    code = "preference_store_error"


class MessageParseError(NotifierError):
    """A queue message could not be decoded or failed category validation."""

    code = "message_parse_error"


class BrokerConnectionError(NotifierError):
    """The queue broker is unreachable."""

    code = "broker_connection_error"
