"""Event router and publisher.

Resolves an event type to its category queue, wraps the job in a durable
envelope and hands it to the broker. Publishing never waits for downstream
processing.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from opentelemetry.trace import SpanKind

from notifier.core.broker import QueueBroker
from notifier.core.exceptions import UnresolvedEventType
from notifier.core.logging import log_info
from notifier.core.metrics import MESSAGES_PUBLISHED_TOTAL, PUBLISH_REJECTED_TOTAL, update_queue_depth
from notifier.core.tracing import inject_trace_headers, message_span
from notifier.modules.routing.events import Category, QUEUES, resolve_category
from notifier.modules.routing.schemas import (
    NotificationEnvelope,
    NotificationJob,
    QueueStatsInfo,
    ENVELOPE_VERSION,
)

logger = logging.getLogger(__name__)


def generate_message_id() -> str:
    """Time-prefixed random message id, e.g. ``msg_1718000000000_3f9c...``."""
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:16]}"


class NotificationPublisher:
    """Publishes notification jobs onto their category queues."""

    def __init__(
        self,
        broker: QueueBroker,
        message_ttl: Optional[int] = None,
        max_length: Optional[int] = None,
    ):
        self.broker = broker
        self.message_ttl = message_ttl
        self.max_length = max_length

    async def declare_queues(self) -> None:
        """Declare every category queue with its TTL and length cap."""
        for category in Category:
            await self.broker.declare_queue(
                category.queue_name,
                message_ttl=self.message_ttl,
                max_length=self.max_length,
            )
        logger.info("All notification queues declared", extra={"queues": list(QUEUES.values())})

    async def route_and_publish(self, job: NotificationJob) -> str:
        """Route a job by its event type and enqueue it.

        Raises:
            UnresolvedEventType: If the event type has no category. Nothing
                is enqueued in that case.

        Returns:
            The generated message id
        """
        try:
            category = resolve_category(job.event_type)
        except UnresolvedEventType:
            PUBLISH_REJECTED_TOTAL.labels(reason="unresolved_event_type").inc()
            raise
        return await self.publish(category, job)

    async def publish(self, category: Category, job: NotificationJob) -> str:
        """Enqueue a job on an explicit category queue."""
        envelope = NotificationEnvelope(
            user_id=job.user_id,
            event_type=job.event_type,
            payload=job.payload,
            channels=job.channels,
            timestamp=datetime.now(timezone.utc),
            queue_type=category.queue_type,
            message_id=generate_message_id(),
            version=ENVELOPE_VERSION,
        )

        with message_span(
            "notification.publish",
            queue=category.queue_name,
            message_id=envelope.message_id,
            kind=SpanKind.PRODUCER,
        ) as span:
            span.set_attribute("notification.event_type", job.event_type)
            headers = inject_trace_headers({
                "content-type": "application/json",
                "message-id": envelope.message_id,
                "x-event-type": job.event_type,
                "x-user-id": job.user_id,
            })
            await self.broker.enqueue(category.queue_name, envelope.to_json(), headers=headers)

        MESSAGES_PUBLISHED_TOTAL.labels(queue_name=category.queue_name).inc()
        log_info(
            logger,
            "Notification published",
            queue=category.queue_name,
            message_id=envelope.message_id,
            user_id=job.user_id,
            event_type=job.event_type,
        )
        return envelope.message_id

    async def queue_stats(self) -> dict[str, QueueStatsInfo]:
        """checkQueue-style statistics for every category queue."""
        stats = {}
        for category in Category:
            snapshot = await self.broker.stats(category.queue_name)
            update_queue_depth(category.queue_name, snapshot.message_count, snapshot.dead_letter_count)
            stats[category.queue_type] = QueueStatsInfo(
                queue_name=category.queue_name,
                message_count=snapshot.message_count,
                consumer_count=snapshot.consumer_count,
                unacked_count=snapshot.unacked_count,
                dead_letter_count=snapshot.dead_letter_count,
                status="active" if snapshot.consumer_count > 0 else "inactive",
            )
        return stats
