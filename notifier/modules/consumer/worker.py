"""Generic queue consumer.

One QueueConsumer serves exactly one category queue and processes one message
at a time. Every pulled message ends in exactly one terminal state:

    DELIVERED -> PROCESSING -> ACKNOWLEDGED
                            -> REQUEUED       (failed, budget left)
                            -> DEAD_LETTERED  (failed, budget spent)

Anything pulled but not settled (process crash, cancelled drain) stays in the
broker's processing list and is recovered on the next start.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from opentelemetry.trace import SpanKind
from redis.exceptions import RedisError

from notifier.core.broker import Delivery, QueueBroker
from notifier.core.exceptions import BrokerConnectionError, NotifierError
from notifier.core.logging import bind_message_id, log_error, log_info, log_warning, message_context
from notifier.core.metrics import record_consumer_outcome
from notifier.core.retry import RetryConfig
from notifier.core.tracing import message_span
from notifier.modules.consumer.validators import CategoryStrategy, parse_envelope
from notifier.modules.delivery.engine import DispatchEngine

logger = logging.getLogger(__name__)


class MessageState(str, Enum):
    DELIVERED = "delivered"
    PROCESSING = "processing"
    ACKNOWLEDGED = "acknowledged"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"


class QueueConsumer:
    """Pulls, dispatches and settles messages from one category queue."""

    def __init__(
        self,
        broker: QueueBroker,
        engine: DispatchEngine,
        strategy: CategoryStrategy,
        max_attempts: int = 5,
        poll_timeout: float = 1.0,
        dispatch_timeout: Optional[float] = 30.0,
        reconnect: Optional[RetryConfig] = None,
    ):
        self.broker = broker
        self.engine = engine
        self.strategy = strategy
        self.retry = RetryConfig(max_attempts=max_attempts)
        self.poll_timeout = poll_timeout
        self.dispatch_timeout = dispatch_timeout
        self.reconnect = reconnect or RetryConfig(initial_delay=1.0, max_delay=30.0)

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._in_flight: Optional[Delivery] = None
        self.processed: dict[str, int] = {
            MessageState.ACKNOWLEDGED.value: 0,
            MessageState.REQUEUED.value: 0,
            MessageState.DEAD_LETTERED.value: 0,
        }

    @property
    def queue_name(self) -> str:
        return self.strategy.queue_name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Recover orphaned messages, register and start the pull loop."""
        if self.running:
            return

        await self.broker.recover(self.queue_name)
        await self.broker.register_consumer(self.queue_name, self.strategy.consumer_tag)

        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=self.strategy.consumer_tag)
        log_info(logger, "Consumer started", queue=self.queue_name, consumer_tag=self.strategy.consumer_tag)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop pulling, let the in-flight message finish, then unregister.

        If ``timeout`` elapses first the loop is cancelled; the unsettled
        message is left for recovery.
        """
        if self._task is None:
            return

        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            log_warning(logger, "Consumer drain timed out, cancelling", queue=self.queue_name)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            log_error(logger, "Consumer loop exited with an error", e, queue=self.queue_name)
        finally:
            self._task = None

        try:
            await self.broker.unregister_consumer(self.queue_name, self.strategy.consumer_tag)
        except (RedisError, BrokerConnectionError) as e:
            log_warning(logger, "Failed to unregister consumer", queue=self.queue_name, error=str(e))

        log_info(logger, "Consumer stopped", queue=self.queue_name, processed=self.processed)

    # ==================== Pull loop ====================

    async def _run(self) -> None:
        failures = 0
        while not self._stopping.is_set():
            try:
                delivery = await self.broker.pull(self.queue_name, timeout=self.poll_timeout)
                failures = 0
                if delivery is not None:
                    await self.handle(delivery)
            except (RedisError, BrokerConnectionError) as e:
                failures += 1
                delay = self.reconnect.calculate_delay(failures)
                log_warning(
                    logger,
                    "Broker unavailable, retrying",
                    queue=self.queue_name,
                    attempt=failures,
                    retry_in=delay,
                    error=str(e),
                )
                await self._sleep_unless_stopping(delay)

    async def _sleep_unless_stopping(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), delay)
        except asyncio.TimeoutError:
            pass

    # ==================== Message handling ====================

    async def handle(self, delivery: Delivery) -> MessageState:
        """Process one delivery and settle it with the broker.

        Broker errors while settling propagate; the message then stays
        unacknowledged and is recovered later.
        """
        self._in_flight = delivery
        message_id = delivery.headers.get("message-id") or delivery.frame_id
        try:
            with message_context(self.queue_name, message_id), message_span(
                "notification.consume",
                queue=self.queue_name,
                message_id=message_id,
                headers=delivery.headers,
                kind=SpanKind.CONSUMER,
            ) as span:
                state = await self._settle(delivery)
                span.set_attribute("notification.state", state.value)
                span.set_attribute("notification.attempts", delivery.delivery_count)
        finally:
            self._in_flight = None

        self.processed[state.value] += 1
        record_consumer_outcome(self.queue_name, state.value)
        return state

    async def _settle(self, delivery: Delivery) -> MessageState:
        error = await self._process(delivery)
        if error is None:
            await self.broker.ack(delivery)
            return MessageState.ACKNOWLEDGED

        if self.retry.exhausted(delivery.delivery_count):
            await self.broker.dead_letter(delivery, error)
            log_error(
                logger,
                "Message dead-lettered",
                queue=self.queue_name,
                attempts=delivery.delivery_count,
                reason=error,
            )
            return MessageState.DEAD_LETTERED

        await self.broker.nack(delivery, requeue=True)
        log_warning(
            logger,
            "Message requeued",
            queue=self.queue_name,
            attempts=delivery.delivery_count,
            reason=error,
        )
        return MessageState.REQUEUED

    async def _process(self, delivery: Delivery) -> Optional[str]:
        """Parse, validate and dispatch. Returns the failure reason, if any."""
        try:
            envelope = parse_envelope(delivery.body)
            bind_message_id(envelope.message_id)
            self.strategy.validate(envelope)

            outcome = await asyncio.wait_for(
                self.engine.dispatch(envelope, retry_count=delivery.attempts),
                self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            return f"Dispatch timed out after {self.dispatch_timeout}s"
        except NotifierError as e:
            log_warning(logger, "Message processing failed", queue=self.queue_name, error=e.message)
            return e.message
        except Exception as e:
            log_error(logger, "Unexpected error processing message", e, queue=self.queue_name)
            return str(e) or type(e).__name__

        if not outcome.success:
            return outcome.error or "Dispatch aborted"

        log_info(
            logger,
            "Message processed",
            queue=self.queue_name,
            message_id=envelope.message_id,
            **outcome.summary(),
        )
        return None
