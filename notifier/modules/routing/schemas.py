"""Pydantic schemas for inbound jobs and queue envelopes."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notifier.modules.routing.events import Category, NotificationChannel, category_from_queue_type

ENVELOPE_VERSION = "1.0"


class NotificationJob(BaseModel):
    """A notification request as accepted from producers."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="Target user")
    event_type: str = Field(..., alias="eventType", min_length=1, description="Fine-grained event tag")
    payload: dict[str, Any] = Field(..., description="Category-specific fields and contact targets")
    channels: Optional[list[NotificationChannel]] = Field(
        None, description="Requested channels; gated by preferences"
    )

    @field_validator("user_id", "event_type")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("payload")
    @classmethod
    def _payload_not_empty(cls, value: dict) -> dict:
        if not value:
            raise ValueError("payload must not be empty")
        return value


class NotificationEnvelope(BaseModel):
    """The durable message placed on a category queue.

    Serialized with camelCase keys; never mutated after publish.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    event_type: str = Field(..., alias="eventType", min_length=1)
    payload: dict[str, Any]
    channels: Optional[list[NotificationChannel]] = None
    timestamp: datetime
    queue_type: str = Field(..., alias="queueType")
    message_id: str = Field(..., alias="messageId", min_length=1)
    version: str = ENVELOPE_VERSION

    @property
    def category(self) -> Category:
        return category_from_queue_type(self.queue_type)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SendNotificationResponse(BaseModel):
    """Response body of the send endpoint."""
    status: str = "success"
    message: str = "Notification queued successfully"
    data: dict[str, Any]


class QueueStatsInfo(BaseModel):
    """Broker statistics for one category queue."""
    model_config = ConfigDict(populate_by_name=True)

    queue_name: str = Field(..., serialization_alias="queueName")
    message_count: int = Field(..., serialization_alias="messageCount")
    consumer_count: int = Field(..., serialization_alias="consumerCount")
    unacked_count: int = Field(0, serialization_alias="unackedCount")
    dead_letter_count: int = Field(0, serialization_alias="deadLetterCount")
    status: str = "active"
