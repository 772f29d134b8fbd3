"""FastAPI router for submitting jobs and inspecting queues."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from notifier.modules.routing.schemas import NotificationJob, SendNotificationResponse
from notifier.modules.routing.service import NotificationPublisher

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_publisher(request: Request) -> NotificationPublisher:
    """Dependency returning the application's publisher."""
    return request.app.state.publisher


@router.post("/send", response_model=SendNotificationResponse)
async def send_notification(
    job: NotificationJob,
    publisher: NotificationPublisher = Depends(get_publisher),
):
    """Accept a notification job and queue it for delivery."""
    message_id = await publisher.route_and_publish(job)

    return SendNotificationResponse(
        data={
            "messageId": message_id,
            "userId": job.user_id,
            "eventType": job.event_type,
            "channels": [c.value for c in job.channels] if job.channels else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/queue/stats")
async def get_queue_statistics(
    publisher: NotificationPublisher = Depends(get_publisher),
):
    """Message and consumer counts per category queue."""
    stats = await publisher.queue_stats()
    return {
        "status": "success",
        "data": {
            "queueStats": {
                name: info.model_dump(by_alias=True) for name, info in stats.items()
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
