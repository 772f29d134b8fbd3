"""Durable queue broker on Redis lists.

Implements the reliable-queue pattern: a message is atomically moved from the
ready list to a processing list when pulled, and only removed from the
processing list on acknowledgment. Anything left in the processing list by a
consumer that died is moved back by ``recover`` so delivery stays
at-least-once.

Per queue the broker keeps these keys:

    queue:{name}              ready messages, newest on the left
    queue:{name}:processing   delivered but unacknowledged
    queue:{name}:dead         dead-lettered messages
    queue:{name}:consumers    set of registered consumer tags
    queue:{name}:meta         declared ttl / max length
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from notifier.core.exceptions import BrokerConnectionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSpec:
    """Bounds a queue was declared with."""
    name: str
    message_ttl: Optional[int] = None
    max_length: Optional[int] = None


@dataclass
class Delivery:
    """A message handed to a consumer and not yet settled."""
    queue: str
    body: str
    headers: dict = field(default_factory=dict)
    attempts: int = 0
    frame_id: str = ""
    raw: str = ""

    @property
    def delivery_count(self) -> int:
        """Number of times this message has been delivered, this one included."""
        return self.attempts + 1


@dataclass
class DeadLetter:
    """A message parked in a dead-letter list."""
    queue: str
    body: str
    headers: dict
    attempts: int
    reason: str
    dead_lettered_at: float


@dataclass
class QueueStats:
    """checkQueue-style statistics for one queue."""
    queue: str
    message_count: int
    consumer_count: int
    unacked_count: int
    dead_letter_count: int


class QueueBroker(ABC):
    """Durable, at-least-once, per-queue FIFO broker with acknowledgments."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def declare_queue(
        self,
        name: str,
        message_ttl: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> QueueSpec:
        pass

    @abstractmethod
    async def enqueue(self, queue: str, body: str, headers: Optional[dict] = None) -> None:
        pass

    @abstractmethod
    async def pull(self, queue: str, timeout: float = 1.0) -> Optional[Delivery]:
        pass

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        pass

    @abstractmethod
    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        pass

    @abstractmethod
    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        pass

    @abstractmethod
    async def recover(self, queue: str) -> int:
        pass

    @abstractmethod
    async def stats(self, queue: str) -> QueueStats:
        pass

    @abstractmethod
    async def register_consumer(self, queue: str, consumer_tag: str) -> None:
        pass

    @abstractmethod
    async def unregister_consumer(self, queue: str, consumer_tag: str) -> None:
        pass

    @abstractmethod
    async def list_dead_letters(self, queue: str, limit: int = 50) -> list[DeadLetter]:
        pass

    @abstractmethod
    async def requeue_dead_letters(self, queue: str) -> int:
        pass


def encode_frame(
    body: str,
    headers: Optional[dict],
    expires_at: Optional[float],
    attempts: int = 0,
    frame_id: Optional[str] = None,
) -> str:
    """Serialize a broker frame around a message body."""
    return json.dumps({
        "id": frame_id or uuid.uuid4().hex,
        "body": body,
        "headers": headers or {},
        "enqueued_at": time.time(),
        "expires_at": expires_at,
        "attempts": attempts,
    })


class RedisQueueBroker(QueueBroker):
    """Queue broker backed by one Redis connection pool.

    The broker is the single owner of its client: it is opened by ``connect``
    at startup and closed by ``close`` at shutdown. redis-py checks a pooled
    connection out per command, so the same broker can be shared by the
    publisher and every consumer task.
    """

    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.url = url
        self._client = client
        self._queues: dict[str, QueueSpec] = {}

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise BrokerConnectionError("Broker not connected. Call connect() first.")
        return self._client

    # ==================== Connection lifecycle ====================

    async def connect(self) -> None:
        """Open the connection pool and verify the broker answers.

        Raises:
            BrokerConnectionError: If the broker cannot be reached
        """
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._client.ping()
        except RedisError as e:
            raise BrokerConnectionError(f"Cannot connect to broker at {self.url}: {e}") from e
        logger.info("Connected to queue broker", extra={"broker_url": self.url})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Queue broker connection closed")

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    # ==================== Queue declaration ====================

    async def declare_queue(
        self,
        name: str,
        message_ttl: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> QueueSpec:
        """Declare a queue with its bounds. Idempotent."""
        spec = QueueSpec(name=name, message_ttl=message_ttl, max_length=max_length)
        self._queues[name] = spec
        await self.client.hset(
            self._meta_key(name),
            mapping={
                "message_ttl": message_ttl or 0,
                "max_length": max_length or 0,
            },
        )
        return spec

    def _spec(self, name: str) -> QueueSpec:
        spec = self._queues.get(name)
        if spec is None:
            raise ValueError(f"Queue not declared: {name}")
        return spec

    # ==================== Producer side ====================

    async def enqueue(self, queue: str, body: str, headers: Optional[dict] = None) -> None:
        """Append a message to a queue, dropping the oldest beyond max length."""
        spec = self._spec(queue)
        expires_at = time.time() + spec.message_ttl if spec.message_ttl else None
        raw = encode_frame(body, headers, expires_at)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lpush(self._ready_key(queue), raw)
            if spec.max_length:
                pipe.ltrim(self._ready_key(queue), 0, spec.max_length - 1)
            results = await pipe.execute()

        length = results[0]
        if spec.max_length and length > spec.max_length:
            logger.warning(
                "Queue length cap reached, oldest messages dropped",
                extra={"queue": queue, "dropped": length - spec.max_length},
            )

    # ==================== Consumer side ====================

    async def pull(self, queue: str, timeout: float = 1.0) -> Optional[Delivery]:
        """Move the oldest ready message to the processing list and return it.

        Expired messages are discarded on the way. Returns None when nothing
        arrived within ``timeout`` seconds.
        """
        while True:
            raw = await self.client.blmove(
                self._ready_key(queue),
                self._processing_key(queue),
                timeout,
                src="RIGHT",
                dest="LEFT",
            )
            if raw is None:
                return None

            try:
                frame = json.loads(raw)
            except ValueError:
                logger.error("Corrupt broker frame, dead-lettering", extra={"queue": queue})
                await self._park(queue, raw, {"body": raw, "headers": {}, "attempts": 0},
                                 "corrupt broker frame")
                continue

            expires_at = frame.get("expires_at")
            if expires_at and expires_at < time.time():
                await self.client.lrem(self._processing_key(queue), 1, raw)
                logger.info(
                    "Message expired before delivery",
                    extra={"queue": queue, "headers": frame.get("headers", {})},
                )
                continue

            return Delivery(
                queue=queue,
                body=frame.get("body", ""),
                headers=frame.get("headers", {}),
                attempts=int(frame.get("attempts", 0)),
                frame_id=frame.get("id", ""),
                raw=raw,
            )

    async def ack(self, delivery: Delivery) -> None:
        await self.client.lrem(self._processing_key(delivery.queue), 1, delivery.raw)

    async def nack(self, delivery: Delivery, requeue: bool = True) -> None:
        """Reject a delivery; when requeued it is the next one delivered."""
        processing = self._processing_key(delivery.queue)
        if not requeue:
            await self.client.lrem(processing, 1, delivery.raw)
            logger.warning("Message rejected without requeue", extra={"queue": delivery.queue})
            return

        frame = json.loads(delivery.raw)
        frame["attempts"] = delivery.attempts + 1
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(processing, 1, delivery.raw)
            pipe.rpush(self._ready_key(delivery.queue), json.dumps(frame))
            await pipe.execute()

    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        frame = {
            "body": delivery.body,
            "headers": delivery.headers,
            "attempts": delivery.delivery_count,
        }
        await self._park(delivery.queue, delivery.raw, frame, reason)

    async def _park(self, queue: str, raw: str, frame: dict, reason: str) -> None:
        frame = dict(frame, reason=reason, dead_lettered_at=time.time())
        spec = self._queues.get(queue)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing_key(queue), 1, raw)
            pipe.lpush(self._dead_key(queue), json.dumps(frame))
            if spec and spec.max_length:
                pipe.ltrim(self._dead_key(queue), 0, spec.max_length - 1)
            await pipe.execute()

    async def recover(self, queue: str) -> int:
        """Return unacknowledged messages to the head of the ready list."""
        recovered = 0
        while True:
            moved = await self.client.lmove(
                self._processing_key(queue),
                self._ready_key(queue),
                src="LEFT",
                dest="RIGHT",
            )
            if moved is None:
                break
            recovered += 1

        if recovered:
            logger.warning(
                "Recovered unacknowledged messages",
                extra={"queue": queue, "recovered": recovered},
            )
        return recovered

    # ==================== Introspection ====================

    async def stats(self, queue: str) -> QueueStats:
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.llen(self._ready_key(queue))
            pipe.scard(self._consumers_key(queue))
            pipe.llen(self._processing_key(queue))
            pipe.llen(self._dead_key(queue))
            ready, consumers, unacked, dead = await pipe.execute()

        return QueueStats(
            queue=queue,
            message_count=ready,
            consumer_count=consumers,
            unacked_count=unacked,
            dead_letter_count=dead,
        )

    async def register_consumer(self, queue: str, consumer_tag: str) -> None:
        await self.client.sadd(self._consumers_key(queue), consumer_tag)

    async def unregister_consumer(self, queue: str, consumer_tag: str) -> None:
        await self.client.srem(self._consumers_key(queue), consumer_tag)

    async def list_dead_letters(self, queue: str, limit: int = 50) -> list[DeadLetter]:
        raws = await self.client.lrange(self._dead_key(queue), 0, limit - 1)
        letters = []
        for raw in raws:
            frame = json.loads(raw)
            letters.append(DeadLetter(
                queue=queue,
                body=frame.get("body", ""),
                headers=frame.get("headers", {}),
                attempts=int(frame.get("attempts", 0)),
                reason=frame.get("reason", ""),
                dead_lettered_at=float(frame.get("dead_lettered_at", 0.0)),
            ))
        return letters

    async def requeue_dead_letters(self, queue: str) -> int:
        """Move every dead letter back to the ready list with a fresh budget."""
        spec = self._spec(queue)
        requeued = 0
        while True:
            raw = await self.client.rpop(self._dead_key(queue))
            if raw is None:
                break
            frame = json.loads(raw)
            expires_at = time.time() + spec.message_ttl if spec.message_ttl else None
            await self.client.lpush(
                self._ready_key(queue),
                encode_frame(frame.get("body", ""), frame.get("headers"), expires_at),
            )
            requeued += 1
        return requeued

    # ==================== Keys ====================

    @staticmethod
    def _ready_key(queue: str) -> str:
        return f"queue:{queue}"

    @staticmethod
    def _processing_key(queue: str) -> str:
        return f"queue:{queue}:processing"

    @staticmethod
    def _dead_key(queue: str) -> str:
        return f"queue:{queue}:dead"

    @staticmethod
    def _consumers_key(queue: str) -> str:
        return f"queue:{queue}:consumers"

    @staticmethod
    def _meta_key(queue: str) -> str:
        return f"queue:{queue}:meta"
