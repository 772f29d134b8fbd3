"""FastAPI router for the delivery log."""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.core.database import get_db
from notifier.modules.delivery.repository import NotificationLogRepository
from notifier.modules.delivery.schemas import NotificationLogInfo, Pagination

router = APIRouter(prefix="/notifications", tags=["delivery"])


def get_log_repository(db: AsyncSession = Depends(get_db)) -> NotificationLogRepository:
    """Dependency to get the delivery log repository."""
    return NotificationLogRepository(db)


@router.get("/{user_id}")
async def get_user_notifications(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    channel: Optional[str] = Query(None),
    repository: NotificationLogRepository = Depends(get_log_repository),
):
    """Paginated delivery history for a user, newest first."""
    logs, total = await repository.list_logs(
        user_id,
        status=status,
        channel=channel,
        limit=limit,
        offset=(page - 1) * limit,
    )

    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )
    return {
        "status": "success",
        "data": {
            "notifications": [
                NotificationLogInfo.model_validate(log).model_dump(by_alias=True, mode="json")
                for log in logs
            ],
            "pagination": pagination.model_dump(),
        },
    }


@router.get("/{user_id}/stats")
async def get_user_notification_stats(
    user_id: str,
    repository: NotificationLogRepository = Depends(get_log_repository),
):
    """Delivery attempt counts by status and channel for a user."""
    stats = await repository.get_stats(user_id)
    return {"status": "success", "data": {"userId": user_id, "stats": stats}}
