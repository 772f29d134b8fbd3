"""Shared in-memory doubles for the broker, cache, stores and senders."""

import asyncio
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from notifier.core.broker import DeadLetter, Delivery, QueueBroker, QueueSpec, QueueStats
from notifier.core.exceptions import PreferenceStoreError
from notifier.modules.delivery.channels import ChannelSender, SendReceipt
from notifier.modules.delivery.schemas import DeliveryAttempt
from notifier.modules.preference.schemas import ChannelPreferences, PreferenceEntry, PreferenceRecord
from notifier.modules.routing.events import Category, NotificationChannel
from notifier.modules.routing.schemas import NotificationEnvelope
from notifier.modules.routing.service import generate_message_id


class InMemoryBroker(QueueBroker):
    """QueueBroker keeping ready/processing/dead lists in process memory."""

    def __init__(self):
        self.specs: dict[str, QueueSpec] = {}
        self.ready: dict[str, deque] = {}
        self.processing: dict[str, list[Delivery]] = {}
        self.dead: dict[str, list[DeadLetter]] = {}
        self.consumers: dict[str, set] = {}
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def ping(self) -> bool:
        return True

    async def declare_queue(self, name, message_ttl=None, max_length=None) -> QueueSpec:
        spec = QueueSpec(name=name, message_ttl=message_ttl, max_length=max_length)
        self.specs[name] = spec
        self.ready.setdefault(name, deque())
        self.processing.setdefault(name, [])
        self.dead.setdefault(name, [])
        self.consumers.setdefault(name, set())
        return spec

    async def enqueue(self, queue, body, headers=None) -> None:
        spec = self.specs[queue]
        ready = self.ready[queue]
        ready.append(Delivery(
            queue=queue,
            body=body,
            headers=dict(headers or {}),
            frame_id=uuid.uuid4().hex,
        ))
        while spec.max_length and len(ready) > spec.max_length:
            ready.popleft()

    async def pull(self, queue, timeout=1.0) -> Optional[Delivery]:
        ready = self.ready[queue]
        if not ready:
            await asyncio.sleep(min(timeout, 0.01))
            return None
        delivery = ready.popleft()
        self.processing[queue].append(delivery)
        return delivery

    def _settle(self, delivery: Delivery) -> None:
        self.processing[delivery.queue] = [
            d for d in self.processing[delivery.queue] if d.frame_id != delivery.frame_id
        ]

    async def ack(self, delivery) -> None:
        self._settle(delivery)

    async def nack(self, delivery, requeue=True) -> None:
        self._settle(delivery)
        if requeue:
            self.ready[delivery.queue].appendleft(Delivery(
                queue=delivery.queue,
                body=delivery.body,
                headers=delivery.headers,
                attempts=delivery.attempts + 1,
                frame_id=delivery.frame_id,
            ))

    async def dead_letter(self, delivery, reason) -> None:
        self._settle(delivery)
        self.dead[delivery.queue].append(DeadLetter(
            queue=delivery.queue,
            body=delivery.body,
            headers=delivery.headers,
            attempts=delivery.delivery_count,
            reason=reason,
            dead_lettered_at=time.time(),
        ))

    async def recover(self, queue) -> int:
        orphaned = self.processing[queue]
        self.processing[queue] = []
        for delivery in reversed(orphaned):
            self.ready[queue].appendleft(delivery)
        return len(orphaned)

    async def stats(self, queue) -> QueueStats:
        return QueueStats(
            queue=queue,
            message_count=len(self.ready[queue]),
            consumer_count=len(self.consumers[queue]),
            unacked_count=len(self.processing[queue]),
            dead_letter_count=len(self.dead[queue]),
        )

    async def register_consumer(self, queue, consumer_tag) -> None:
        self.consumers[queue].add(consumer_tag)

    async def unregister_consumer(self, queue, consumer_tag) -> None:
        self.consumers[queue].discard(consumer_tag)

    async def list_dead_letters(self, queue, limit=50) -> list[DeadLetter]:
        return list(reversed(self.dead[queue]))[:limit]

    async def requeue_dead_letters(self, queue) -> int:
        letters = self.dead[queue]
        self.dead[queue] = []
        for letter in letters:
            await self.enqueue(queue, letter.body, letter.headers)
        return len(letters)


class FakeRedis:
    """The subset of redis.asyncio.Redis the preference cache uses."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail = False
        self.fail_delete = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value

    async def delete(self, key):
        self._check()
        if self.fail_delete:
            raise RedisConnectionError("redis unavailable")
        return 1 if self.data.pop(key, None) is not None else 0


class InMemoryPreferenceStore:
    """Preference rows keyed by (user, channel, category)."""

    def __init__(self):
        self.rows: dict[tuple[str, str, str], bool] = {}
        self.fail = False
        self.loads = 0
        self.upserts = 0

    async def load(self, user_id: str) -> list[PreferenceRecord]:
        self.loads += 1
        if self.fail:
            raise PreferenceStoreError("database unavailable")
        return [
            PreferenceRecord(user_id=user, channel=channel, event_category=category, enabled=enabled)
            for (user, channel, category), enabled in self.rows.items()
            if user == user_id
        ]

    async def upsert(self, user_id: str, entries: list[PreferenceEntry]) -> None:
        if self.fail:
            raise PreferenceStoreError("database unavailable")
        self.upserts += 1
        for entry in entries:
            key = (user_id, entry.channel.value, entry.event_category.value)
            # Keep rows in update order, like ORDER BY updated_at
            self.rows.pop(key, None)
            self.rows[key] = entry.enabled


class StaticPreferences:
    """Preference source returning fixed flags, or raising."""

    def __init__(self, preferences: Optional[ChannelPreferences] = None, error: Optional[Exception] = None):
        self.preferences = preferences or ChannelPreferences(email=True, sms=True, push=True)
        self.error = error

    async def get(self, user_id: str) -> ChannelPreferences:
        if self.error:
            raise self.error
        return self.preferences


class RecordingDeliveryLog:
    """Delivery log keeping attempts in a list."""

    def __init__(self, fail: bool = False):
        self.attempts: list[DeliveryAttempt] = []
        self.fail = fail

    async def record(self, attempt: DeliveryAttempt) -> bool:
        if self.fail:
            return False
        self.attempts.append(attempt)
        return True


class FakeSender(ChannelSender):
    """Sender recording calls; optionally raising or stalling."""

    def __init__(self, channel: NotificationChannel, error: Optional[Exception] = None, delay: float = 0.0):
        self.channel = channel
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, Any]] = []

    async def send(self, target, content) -> SendReceipt:
        self.calls.append((target, content))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self._receipt(target, delivery_id=f"{self.channel.value}-{len(self.calls)}")


def make_envelope(
    event_type: str = "wallet_debited",
    payload: Optional[dict] = None,
    category: Category = Category.WALLET,
    user_id: str = "u1",
    channels: Optional[list[NotificationChannel]] = None,
) -> NotificationEnvelope:
    return NotificationEnvelope(
        user_id=user_id,
        event_type=event_type,
        payload=payload if payload is not None else {"transactionId": "t1", "amount": 150, "email": "u1@x.com"},
        channels=channels,
        timestamp=datetime.now(timezone.utc),
        queue_type=category.queue_type,
        message_id=generate_message_id(),
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def preference_store() -> InMemoryPreferenceStore:
    return InMemoryPreferenceStore()


@pytest.fixture
def delivery_log() -> RecordingDeliveryLog:
    return RecordingDeliveryLog()


@pytest.fixture
def senders() -> dict[NotificationChannel, FakeSender]:
    return {channel: FakeSender(channel) for channel in NotificationChannel}


@pytest.fixture
def envelope_factory():
    return make_envelope


@pytest.fixture
def make_sender():
    return FakeSender


@pytest.fixture
def make_preferences():
    return StaticPreferences
