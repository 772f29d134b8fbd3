"""Celery tasks for delivery log housekeeping."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from notifier.core.celery_app import celery_app
from notifier.core.config import settings
from notifier.core.database import async_session_maker
from notifier.modules.delivery.repository import NotificationLogRepository

logger = logging.getLogger(__name__)


async def _prune_delivery_logs(retention_days: int) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    async with async_session_maker() as session:
        return await NotificationLogRepository(session).delete_older_than(cutoff)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    name="delivery.prune_delivery_logs",
)
def prune_delivery_logs(self, retention_days: Optional[int] = None) -> dict:
    """Delete delivery log rows older than the retention window.

    Args:
        retention_days: Override for DELIVERY_LOG_RETENTION_DAYS

    Returns:
        dict: Number of rows deleted
    """
    days = retention_days or settings.DELIVERY_LOG_RETENTION_DAYS
    try:
        deleted = asyncio.run(_prune_delivery_logs(days))
    except Exception as exc:
        raise self.retry(exc=exc)

    logger.info("Pruned delivery logs", extra={"deleted": deleted, "retention_days": days})
    return {"deleted": deleted, "retention_days": days}


DELIVERY_BEAT_SCHEDULE = {
    "prune-delivery-logs": {
        "task": "delivery.prune_delivery_logs",
        "schedule": 86400.0,  # daily
    },
}

celery_app.conf.beat_schedule.update(DELIVERY_BEAT_SCHEDULE)
