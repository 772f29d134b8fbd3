"""Delivery log model.

One append-only row per channel attempt. Rows are never updated by the
pipeline; old rows are pruned by the housekeeping task.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from notifier.core.database import Base


class DeliveryStatus(str, Enum):
    """Outcome of one channel attempt."""
    SENT = "sent"
    FAILED = "failed"


# Pseudo-channel for failures that abort before any channel is attempted
SYSTEM_CHANNEL = "system"


class NotificationLog(Base):
    """Audit record of a delivery attempt."""

    __tablename__ = "notification_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Envelope message id; delivery_id is the provider's id when sent
    message_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    delivery_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload_preview: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    __table_args__ = (
        Index("ix_notification_logs_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<NotificationLog(id={self.id}, channel={self.channel}, status={self.status})>"
