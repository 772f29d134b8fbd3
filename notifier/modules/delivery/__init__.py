"""Delivery module: templates, channel senders, dispatch engine and delivery log."""

from notifier.modules.delivery.channels import (
    ChannelSender,
    EmailSender,
    PushSender,
    SendReceipt,
    SMSSender,
    default_senders,
)
from notifier.modules.delivery.engine import DispatchEngine
from notifier.modules.delivery.models import DeliveryStatus, NotificationLog
from notifier.modules.delivery.repository import NotificationLogRepository, SqlDeliveryLog
from notifier.modules.delivery.schemas import DeliveryAttempt, DeliveryOutcome
from notifier.modules.delivery.templates import RenderedContent, render

__all__ = [
    "ChannelSender",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DispatchEngine",
    "EmailSender",
    "NotificationLog",
    "NotificationLogRepository",
    "PushSender",
    "RenderedContent",
    "SMSSender",
    "SendReceipt",
    "SqlDeliveryLog",
    "default_senders",
    "render",
]
