"""Supervisor running one consumer per category queue."""

import asyncio
import logging
from typing import Optional

from notifier.core.broker import QueueBroker
from notifier.core.config import Settings
from notifier.core.retry import RetryConfig
from notifier.modules.consumer.validators import strategy_for
from notifier.modules.consumer.worker import QueueConsumer
from notifier.modules.delivery.engine import DispatchEngine
from notifier.modules.routing.events import Category

logger = logging.getLogger(__name__)


class ConsumerSupervisor:
    """Starts, stops and reports on the per-category consumers."""

    def __init__(
        self,
        broker: QueueBroker,
        engine: DispatchEngine,
        max_attempts: int = 5,
        poll_timeout: float = 1.0,
        dispatch_timeout: Optional[float] = 30.0,
        reconnect_max_delay: float = 30.0,
    ):
        self.broker = broker
        self.consumers: dict[Category, QueueConsumer] = {
            category: QueueConsumer(
                broker,
                engine,
                strategy_for(category),
                max_attempts=max_attempts,
                poll_timeout=poll_timeout,
                dispatch_timeout=dispatch_timeout,
                reconnect=RetryConfig(initial_delay=1.0, max_delay=reconnect_max_delay),
            )
            for category in Category
        }

    @classmethod
    def from_settings(cls, broker: QueueBroker, engine: DispatchEngine, config: Settings) -> "ConsumerSupervisor":
        return cls(
            broker,
            engine,
            max_attempts=config.CONSUMER_MAX_ATTEMPTS,
            poll_timeout=config.CONSUMER_POLL_TIMEOUT_SECONDS,
            dispatch_timeout=config.DISPATCH_TIMEOUT_SECONDS,
            reconnect_max_delay=config.BROKER_RECONNECT_MAX_DELAY_SECONDS,
        )

    def consumer_for(self, category: Category) -> QueueConsumer:
        return self.consumers[category]

    async def start_all(self) -> None:
        await asyncio.gather(*(consumer.start() for consumer in self.consumers.values()))
        logger.info("All notification consumers started")

    async def stop_all(self, timeout: Optional[float] = None) -> None:
        """Drain every consumer concurrently."""
        await asyncio.gather(*(consumer.stop(timeout) for consumer in self.consumers.values()))
        logger.info("All notification consumers stopped")

    async def status(self) -> dict[str, dict]:
        """Running flag, broker counters and local outcome counts per category."""
        status = {}
        for category, consumer in self.consumers.items():
            stats = await self.broker.stats(category.queue_name)
            status[category.queue_type] = {
                "queueName": category.queue_name,
                "running": consumer.running,
                "inFlight": consumer.in_flight,
                "messageCount": stats.message_count,
                "consumerCount": stats.consumer_count,
                "unackedCount": stats.unacked_count,
                "deadLetterCount": stats.dead_letter_count,
                "processed": dict(consumer.processed),
                "status": "active" if consumer.running else "inactive",
            }
        return status
