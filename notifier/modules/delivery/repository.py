"""Repository for the append-only delivery log."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifier.core.logging import log_error
from notifier.modules.delivery.models import NotificationLog
from notifier.modules.delivery.schemas import DeliveryAttempt

logger = logging.getLogger(__name__)


class NotificationLogRepository:
    """Database access for delivery log rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_log(self, attempt: DeliveryAttempt) -> NotificationLog:
        log = NotificationLog(
            user_id=attempt.user_id,
            channel=attempt.channel,
            status=attempt.status.value,
            message_id=attempt.message_id,
            delivery_id=attempt.delivery_id,
            event_type=attempt.event_type,
            payload_preview=attempt.payload_preview,
            error=attempt.error,
            retry_count=attempt.retry_count,
        )
        self.session.add(log)
        await self.session.commit()
        await self.session.refresh(log)
        return log

    async def list_logs(
        self,
        user_id: str,
        status: Optional[str] = None,
        channel: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[NotificationLog], int]:
        """List a user's logs, newest first, with the total match count."""
        query = select(NotificationLog).where(NotificationLog.user_id == user_id)
        count_query = select(func.count()).select_from(NotificationLog).where(
            NotificationLog.user_id == user_id
        )

        if status:
            query = query.where(NotificationLog.status == status)
            count_query = count_query.where(NotificationLog.status == status)
        if channel:
            query = query.where(NotificationLog.channel == channel)
            count_query = count_query.where(NotificationLog.channel == channel)

        total_result = await self.session.execute(count_query)
        total = total_result.scalar() or 0

        result = await self.session.execute(
            query.order_by(desc(NotificationLog.created_at)).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_stats(self, user_id: Optional[str] = None) -> list[dict]:
        """Attempt counts grouped by status and channel."""
        query = select(
            NotificationLog.status,
            NotificationLog.channel,
            func.count(NotificationLog.id),
        ).group_by(NotificationLog.status, NotificationLog.channel)

        if user_id:
            query = query.where(NotificationLog.user_id == user_id)

        result = await self.session.execute(query)
        return [
            {"status": status, "channel": channel, "count": count}
            for status, channel, count in result.all()
        ]

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(NotificationLog).where(NotificationLog.created_at < cutoff)
        )
        await self.session.commit()
        return result.rowcount or 0


class SqlDeliveryLog:
    """Delivery log writer used by the dispatch engine."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(self, attempt: DeliveryAttempt) -> bool:
        """Persist one attempt. Returns False if the write failed."""
        try:
            async with self.session_factory() as session:
                await NotificationLogRepository(session).create_log(attempt)
        except (SQLAlchemyError, OSError) as e:
            log_error(
                logger,
                "Failed to write delivery log",
                e,
                user_id=attempt.user_id,
                channel=attempt.channel,
                status=attempt.status.value,
                message_id=attempt.message_id,
            )
            return False

        logger.debug(
            "Logged delivery attempt",
            extra={"channel": attempt.channel, "status": attempt.status.value},
        )
        return True
