"""Pydantic schemas for notification preferences."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from notifier.modules.routing.events import Category, NotificationChannel


class ChannelPreferences(BaseModel):
    """Per-user channel enablement, collapsed across categories."""
    model_config = ConfigDict(frozen=True)

    email: bool = False
    sms: bool = False
    push: bool = False

    def is_enabled(self, channel: NotificationChannel) -> bool:
        return getattr(self, channel.value)


# Used whenever preferences cannot be read
DEFAULT_PREFERENCES = ChannelPreferences(email=True, sms=False, push=False)


class PreferenceEntry(BaseModel):
    """A validated preference write."""
    channel: NotificationChannel
    event_category: Category
    enabled: bool


class PreferenceRecord(BaseModel):
    """A stored preference row as read back from the store."""
    user_id: str
    channel: str
    event_category: str
    enabled: bool


class PreferenceUpdateRequest(BaseModel):
    """Body of the preference update endpoint.

    Entries are kept raw so that validation happens in one place and a
    single bad entry rejects the whole update.
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., validation_alias=AliasChoices("userId", "user_id"), min_length=1)
    preferences: list[dict[str, Any]]


class PreferenceResponse(BaseModel):
    status: str = "success"
    message: str = ""
    data: dict[str, Any]
