"""Tests for the notification publisher."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from notifier.core.exceptions import UnresolvedEventType
from notifier.modules.routing.events import Category
from notifier.modules.routing.schemas import ENVELOPE_VERSION, NotificationEnvelope, NotificationJob
from notifier.modules.routing.service import NotificationPublisher


def wallet_job(**overrides) -> NotificationJob:
    data = {
        "userId": "u1",
        "eventType": "wallet_debited",
        "payload": {"transactionId": "t1", "amount": 150, "email": "u1@x.com"},
    }
    data.update(overrides)
    return NotificationJob(**data)


async def declared_publisher(broker) -> NotificationPublisher:
    publisher = NotificationPublisher(broker, message_ttl=86400, max_length=10000)
    await publisher.declare_queues()
    return publisher


class TestPublish:

    @pytest.mark.asyncio
    async def test_declares_every_category_queue_with_bounds(self, broker):
        await declared_publisher(broker)

        for category in Category:
            spec = broker.specs[category.queue_name]
            assert spec.message_ttl == 86400
            assert spec.max_length == 10000

    @pytest.mark.asyncio
    async def test_job_lands_on_its_category_queue(self, broker):
        publisher = await declared_publisher(broker)

        message_id = await publisher.route_and_publish(wallet_job())

        ready = broker.ready[Category.WALLET.queue_name]
        assert len(ready) == 1
        envelope = NotificationEnvelope.model_validate_json(ready[0].body)
        assert envelope.message_id == message_id
        assert envelope.queue_type == "WALLET"
        assert envelope.version == ENVELOPE_VERSION
        assert envelope.payload["amount"] == 150
        assert ready[0].headers["x-event-type"] == "wallet_debited"
        assert ready[0].headers["x-user-id"] == "u1"
        assert ready[0].headers["message-id"] == message_id

    @pytest.mark.asyncio
    async def test_envelope_uses_camel_case_keys(self, broker):
        publisher = await declared_publisher(broker)
        await publisher.route_and_publish(wallet_job())

        body = broker.ready[Category.WALLET.queue_name][0].body
        for key in ("userId", "eventType", "queueType", "messageId", "timestamp", "version"):
            assert f'"{key}"' in body
        # channels is omitted when not hinted
        assert '"channels"' not in body

    @pytest.mark.asyncio
    async def test_unknown_event_type_leaves_queues_untouched(self, broker):
        publisher = await declared_publisher(broker)

        with pytest.raises(UnresolvedEventType):
            await publisher.route_and_publish(wallet_job(eventType="unknown_type"))

        for category in Category:
            stats = await broker.stats(category.queue_name)
            assert stats.message_count == 0

    @pytest.mark.asyncio
    async def test_two_publishes_get_distinct_ids(self, broker):
        publisher = await declared_publisher(broker)

        first = await publisher.route_and_publish(wallet_job())
        second = await publisher.route_and_publish(wallet_job())

        assert first != second

    @pytest.mark.asyncio
    async def test_queue_stats_report_every_category(self, broker):
        publisher = await declared_publisher(broker)
        await publisher.route_and_publish(wallet_job())
        await broker.register_consumer(Category.BOOKING.queue_name, "booking-consumer")

        stats = await publisher.queue_stats()

        assert set(stats) == {"BOOKING", "WALLET", "EXPENSE", "REWARDS"}
        assert stats["WALLET"].message_count == 1
        assert stats["WALLET"].status == "inactive"
        assert stats["BOOKING"].status == "active"
        assert stats["BOOKING"].model_dump(by_alias=True)["queueName"] == "booking_notifications"


class TestJobValidation:

    @pytest.mark.parametrize("overrides", [
        {"userId": ""},
        {"userId": "   "},
        {"eventType": ""},
        {"payload": {}},
    ])
    def test_missing_required_fields_are_rejected(self, overrides):
        with pytest.raises(PydanticValidationError):
            wallet_job(**overrides)

    def test_unknown_channel_hint_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            wallet_job(channels=["fax"])

    def test_snake_case_field_names_are_accepted(self):
        job = NotificationJob(user_id="u1", event_type="booking", payload={"bookingId": "b1"})
        assert job.user_id == "u1"
