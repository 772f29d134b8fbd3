"""Core module for configuration and shared infrastructure."""

from notifier.core.config import settings
from notifier.core.exceptions import (
    NotifierError,
    ValidationError,
    UnresolvedEventType,
    InvalidPreferenceError,
    ChannelDeliveryError,
    PreferenceStoreError,
    MessageParseError,
    BrokerConnectionError,
)

__all__ = [
    "settings",
    "NotifierError",
    "ValidationError",
    "UnresolvedEventType",
    "InvalidPreferenceError",
    "ChannelDeliveryError",
    "PreferenceStoreError",
    "MessageParseError",
    "BrokerConnectionError",
]
