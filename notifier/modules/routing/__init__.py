"""Event routing and publishing.

Maps fine-grained event types onto the four category queues and enqueues
durable envelopes for the consumers.
"""

from notifier.modules.routing.events import (
    Category,
    NotificationChannel,
    QUEUES,
    EVENT_CATEGORY_MAP,
    resolve_category,
)
from notifier.modules.routing.schemas import NotificationEnvelope, NotificationJob
from notifier.modules.routing.service import NotificationPublisher, generate_message_id

__all__ = [
    "Category",
    "NotificationChannel",
    "QUEUES",
    "EVENT_CATEGORY_MAP",
    "resolve_category",
    "NotificationEnvelope",
    "NotificationJob",
    "NotificationPublisher",
    "generate_message_id",
]
