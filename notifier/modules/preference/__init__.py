"""User notification preferences: store, read-through cache and API."""

from notifier.modules.preference.cache import PreferenceCache, collapse_preferences, validate_entry
from notifier.modules.preference.schemas import (
    ChannelPreferences,
    DEFAULT_PREFERENCES,
    PreferenceEntry,
    PreferenceRecord,
)

__all__ = [
    "PreferenceCache",
    "collapse_preferences",
    "validate_entry",
    "ChannelPreferences",
    "DEFAULT_PREFERENCES",
    "PreferenceEntry",
    "PreferenceRecord",
]
