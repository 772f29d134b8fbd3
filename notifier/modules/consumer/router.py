"""FastAPI router for consumer control and dead-letter recovery."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request

from notifier.core.broker import QueueBroker
from notifier.core.exceptions import ValidationError
from notifier.modules.consumer.supervisor import ConsumerSupervisor
from notifier.modules.routing.events import Category

router = APIRouter(prefix="/notifications", tags=["consumers"])


def get_supervisor(request: Request) -> ConsumerSupervisor:
    """Dependency returning the application's consumer supervisor."""
    return request.app.state.supervisor


def get_broker(request: Request) -> QueueBroker:
    return request.app.state.broker


def _category(value: str) -> Category:
    try:
        return Category(value.lower())
    except ValueError:
        raise ValidationError(
            f"Unknown category: {value}. Valid categories: {', '.join(c.value for c in Category)}"
        )


@router.post("/consumers/start")
async def start_consumers(supervisor: ConsumerSupervisor = Depends(get_supervisor)):
    await supervisor.start_all()
    return {"status": "success", "message": "All consumers started successfully"}


@router.post("/consumers/stop")
async def stop_consumers(supervisor: ConsumerSupervisor = Depends(get_supervisor)):
    """Gracefully drain and stop every consumer."""
    await supervisor.stop_all()
    return {"status": "success", "message": "All consumers stopped successfully"}


@router.get("/consumers/status")
async def get_consumer_status(supervisor: ConsumerSupervisor = Depends(get_supervisor)):
    return {
        "status": "success",
        "data": {
            "consumers": await supervisor.status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.get("/dead-letters/{category}")
async def list_dead_letters(
    category: str,
    limit: int = Query(50, ge=1, le=500),
    broker: QueueBroker = Depends(get_broker),
):
    """Most recent dead-lettered messages of a category queue."""
    queue = _category(category).queue_name
    letters = await broker.list_dead_letters(queue, limit=limit)
    return {
        "status": "success",
        "data": {
            "queueName": queue,
            "deadLetters": [
                {
                    "body": letter.body,
                    "headers": letter.headers,
                    "attempts": letter.attempts,
                    "reason": letter.reason,
                    "deadLetteredAt": datetime.fromtimestamp(
                        letter.dead_lettered_at, timezone.utc
                    ).isoformat(),
                }
                for letter in letters
            ],
        },
    }


@router.post("/dead-letters/{category}/requeue")
async def requeue_dead_letters(
    category: str,
    broker: QueueBroker = Depends(get_broker),
):
    """Move a category's dead letters back onto its queue with a fresh retry budget."""
    queue = _category(category).queue_name
    requeued = await broker.requeue_dead_letters(queue)
    return {"status": "success", "data": {"queueName": queue, "requeued": requeued}}
