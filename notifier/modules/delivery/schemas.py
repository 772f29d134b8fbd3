"""Schemas for delivery attempts, dispatch outcomes and the log API."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from notifier.modules.delivery.models import DeliveryStatus

PAYLOAD_PREVIEW_LENGTH = 200


def payload_preview(payload: Any) -> str:
    """Compact JSON of the payload, truncated for the audit log."""
    return json.dumps(payload, separators=(",", ":"), default=str)[:PAYLOAD_PREVIEW_LENGTH]


@dataclass(frozen=True)
class DeliveryAttempt:
    """One channel attempt, as written to the delivery log."""
    user_id: str
    channel: str
    status: DeliveryStatus
    message_id: str
    payload_preview: str
    retry_count: int = 0
    event_type: Optional[str] = None
    delivery_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DeliveryOutcome:
    """Result of dispatching one envelope.

    ``success`` is true whenever the engine ran to completion, even if some
    or all channels failed; it is false only when dispatch aborted before
    attempting any channel.
    """
    message_id: str
    success: bool
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    error: Optional[str] = None
    log_failures: int = 0

    @property
    def sent(self) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.status == DeliveryStatus.SENT]

    @property
    def failed(self) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.status == DeliveryStatus.FAILED]

    def summary(self) -> Mapping[str, int]:
        return {"sent": len(self.sent), "failed": len(self.failed)}


class NotificationLogInfo(BaseModel):
    """A delivery log row as returned by the API."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    channel: str
    status: str
    message_id: str = Field(..., serialization_alias="messageId")
    delivery_id: Optional[str] = Field(None, serialization_alias="deliveryId")
    retry_count: int = Field(0, serialization_alias="retryCount")
    payload_preview: Optional[str] = Field(None, serialization_alias="payloadPreview")
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(None, serialization_alias="createdAt")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
