"""Read-through preference cache.

Channel enablement is resolved per user across all categories. Reads fail
open to DEFAULT_PREFERENCES; writes invalidate the user's entry so the next
read reflects them without waiting for the TTL.
"""

import logging
from typing import Any, Iterable, Protocol

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from notifier.core.exceptions import InvalidPreferenceError, PreferenceStoreError
from notifier.core.logging import log_warning, log_error
from notifier.modules.routing.events import Category, NotificationChannel
from notifier.modules.preference.schemas import (
    ChannelPreferences,
    DEFAULT_PREFERENCES,
    PreferenceEntry,
    PreferenceRecord,
)

logger = logging.getLogger(__name__)

VALID_CHANNELS = [c.value for c in NotificationChannel]
VALID_CATEGORIES = [c.value for c in Category]


class PreferenceStore(Protocol):
    async def load(self, user_id: str) -> list[PreferenceRecord]: ...

    async def upsert(self, user_id: str, entries: list[PreferenceEntry]) -> None: ...


def collapse_preferences(records: Iterable[PreferenceRecord]) -> ChannelPreferences:
    """Collapse per-category rows into one flag per channel.

    Records are expected oldest update first; the most recently updated row
    for a channel decides its flag. Channels without any row keep their
    DEFAULT_PREFERENCES value.
    """
    seen: dict[str, bool] = {}
    for record in records:
        if record.channel not in VALID_CHANNELS:
            continue
        seen[record.channel] = record.enabled

    flags = {
        channel: seen.get(channel, getattr(DEFAULT_PREFERENCES, channel))
        for channel in VALID_CHANNELS
    }
    return ChannelPreferences(**flags)


def validate_entry(entry: Any) -> PreferenceEntry:
    """Validate one raw preference entry.

    Accepts ``eventCategory`` or ``eventType`` for the category and
    ``enabled`` or ``isEnabled`` for the flag.

    Raises:
        InvalidPreferenceError: On unknown channel/category or non-boolean flag
    """
    if not isinstance(entry, dict):
        raise InvalidPreferenceError(f"Preference entry must be an object, got {type(entry).__name__}")

    channel = entry.get("channel")
    if channel not in VALID_CHANNELS:
        raise InvalidPreferenceError(
            f"Invalid channel: {channel}. Valid channels: {', '.join(VALID_CHANNELS)}"
        )

    category = entry.get("eventCategory", entry.get("eventType"))
    if category not in VALID_CATEGORIES:
        raise InvalidPreferenceError(
            f"Invalid eventCategory: {category}. Valid categories: {', '.join(VALID_CATEGORIES)}"
        )

    enabled = entry.get("enabled", entry.get("isEnabled"))
    if not isinstance(enabled, bool):
        raise InvalidPreferenceError(f"enabled must be boolean for {channel}")

    return PreferenceEntry(
        channel=NotificationChannel(channel),
        event_category=Category(category),
        enabled=enabled,
    )


class PreferenceCache:
    """Caches collapsed channel preferences per user in Redis."""

    KEY_TEMPLATE = "user:{user_id}:preferences"

    def __init__(self, redis_client, store: PreferenceStore, ttl_seconds: int = 3600):
        self.redis = redis_client
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, user_id: str) -> str:
        return self.KEY_TEMPLATE.format(user_id=user_id)

    async def get(self, user_id: str) -> ChannelPreferences:
        """Return the user's channel preferences. Never raises."""
        try:
            cached = await self.redis.get(self._key(user_id))
        except RedisError as e:
            log_warning(logger, "Preference cache unreachable, reading store", user_id=user_id, error=str(e))
            cached = None

        if cached:
            try:
                return ChannelPreferences.model_validate_json(cached)
            except PydanticValidationError:
                log_warning(logger, "Discarding unreadable cached preferences", user_id=user_id)

        try:
            records = await self.store.load(user_id)
        except PreferenceStoreError as e:
            log_warning(
                logger,
                "Preference store unreachable, using defaults",
                user_id=user_id,
                error=str(e),
            )
            return DEFAULT_PREFERENCES

        preferences = collapse_preferences(records)

        try:
            await self.redis.set(self._key(user_id), preferences.model_dump_json(), ex=self.ttl_seconds)
        except RedisError as e:
            log_warning(logger, "Failed to cache preferences", user_id=user_id, error=str(e))

        return preferences

    async def update(self, user_id: str, entries: list[Any]) -> ChannelPreferences:
        """Validate and upsert preference entries, then return a fresh read.

        Every entry is validated before anything is written.

        Raises:
            InvalidPreferenceError: If any entry is invalid
            PreferenceStoreError: If the store or cache rejects the write
        """
        if not isinstance(entries, list):
            raise InvalidPreferenceError("Preferences must be an array")

        validated = [validate_entry(entry) for entry in entries]

        await self.store.upsert(user_id, validated)
        await self.invalidate(user_id)

        return await self.get(user_id)

    async def invalidate(self, user_id: str) -> None:
        try:
            await self.redis.delete(self._key(user_id))
        except RedisError as e:
            log_error(logger, "Failed to invalidate cached preferences", e, user_id=user_id)
            raise PreferenceStoreError(f"Failed to invalidate preferences for {user_id}: {e}") from e
