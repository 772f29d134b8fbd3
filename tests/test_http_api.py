"""HTTP surface tests with in-memory collaborators."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from notifier.core.broker import DeadLetter
from notifier.main import create_app
from notifier.modules.consumer.supervisor import ConsumerSupervisor
from notifier.modules.delivery.router import get_log_repository
from notifier.modules.delivery.schemas import DeliveryOutcome
from notifier.modules.preference.cache import PreferenceCache
from notifier.modules.routing.service import NotificationPublisher


class StubLogRepository:

    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def list_logs(self, user_id, status=None, channel=None, limit=10, offset=0):
        self.calls.append({"user_id": user_id, "status": status, "channel": channel, "limit": limit, "offset": offset})
        if self.error:
            raise self.error
        return self.rows, len(self.rows)

    async def get_stats(self, user_id=None):
        return [{"status": "sent", "channel": "email", "count": len(self.rows)}]


@pytest.fixture
def client(broker, fake_redis, preference_store):
    engine = AsyncMock()
    engine.dispatch.side_effect = lambda envelope, retry_count=0: DeliveryOutcome(
        message_id=envelope.message_id, success=True
    )

    @asynccontextmanager
    async def test_lifespan(app):
        publisher = NotificationPublisher(broker, message_ttl=86400, max_length=10000)
        await publisher.declare_queues()
        app.state.broker = broker
        app.state.publisher = publisher
        app.state.preference_cache = PreferenceCache(fake_redis, preference_store)
        app.state.supervisor = ConsumerSupervisor(broker, engine, poll_timeout=0.01)
        yield
        await app.state.supervisor.stop_all()

    app = create_app(test_lifespan)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


class TestSendEndpoint:

    def test_valid_job_is_queued(self, client, broker):
        response = client.post("/api/notifications/send", json={
            "userId": "u1",
            "eventType": "wallet_debited",
            "payload": {"transactionId": "t1", "amount": 150, "email": "u1@x.com"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["messageId"].startswith("msg_")
        assert body["data"]["eventType"] == "wallet_debited"
        assert len(broker.ready["wallet_notifications"]) == 1

    def test_unknown_event_type_is_a_client_error(self, client, broker):
        response = client.post("/api/notifications/send", json={
            "userId": "u1",
            "eventType": "unknown_type",
            "payload": {"a": 1},
        })

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == "unresolved_event_type"
        assert "unknown_type" in body["message"]
        assert all(len(ready) == 0 for ready in broker.ready.values())

    def test_missing_fields_are_a_client_error(self, client):
        response = client.post("/api/notifications/send", json={"eventType": "booking", "payload": {}})

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == "validation_error"
        assert "userId" in body["message"]


class TestPreferenceEndpoints:

    def test_unknown_user_gets_defaults(self, client):
        response = client.get("/api/notifications/preferences/u1")

        assert response.status_code == 200
        assert response.json()["data"]["preferences"] == {"email": True, "sms": False, "push": False}

    def test_update_is_reflected(self, client):
        response = client.put("/api/notifications/preferences", json={
            "userId": "u1",
            "preferences": [{"channel": "sms", "eventType": "booking", "isEnabled": True}],
        })

        assert response.status_code == 200
        assert response.json()["data"]["preferences"]["sms"] is True
        follow_up = client.get("/api/notifications/preferences/u1")
        assert follow_up.json()["data"]["preferences"]["sms"] is True

    def test_invalid_entry_is_a_client_error(self, client):
        response = client.put("/api/notifications/preferences", json={
            "userId": "u1",
            "preferences": [{"channel": "fax", "eventType": "booking", "isEnabled": True}],
        })

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_preference"


class TestQueueAndConsumerEndpoints:

    def test_queue_stats(self, client):
        response = client.get("/api/notifications/queue/stats")

        assert response.status_code == 200
        stats = response.json()["data"]["queueStats"]
        assert set(stats) == {"BOOKING", "WALLET", "EXPENSE", "REWARDS"}
        assert stats["BOOKING"]["queueName"] == "booking_notifications"

    def test_consumer_start_status_stop(self, client):
        assert client.post("/api/notifications/consumers/start").status_code == 200

        status = client.get("/api/notifications/consumers/status").json()["data"]["consumers"]
        assert all(entry["running"] for entry in status.values())

        assert client.post("/api/notifications/consumers/stop").status_code == 200
        status = client.get("/api/notifications/consumers/status").json()["data"]["consumers"]
        assert not any(entry["running"] for entry in status.values())

    def test_dead_letters_for_unknown_category(self, client):
        response = client.get("/api/notifications/dead-letters/travel")

        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_dead_letters_list_and_requeue(self, client, broker):
        queue = "booking_notifications"
        broker.dead[queue].append(DeadLetter(
            queue=queue,
            body='{"userId": "u1"}',
            headers={"message-id": "msg_1"},
            attempts=5,
            reason="gave up",
            dead_lettered_at=0.0,
        ))

        listed = client.get("/api/notifications/dead-letters/booking").json()["data"]
        assert listed["deadLetters"][0]["reason"] == "gave up"
        assert listed["deadLetters"][0]["attempts"] == 5

        requeued = client.post("/api/notifications/dead-letters/BOOKING/requeue").json()["data"]
        assert requeued["requeued"] == 1
        assert len(broker.ready[queue]) == 1
        assert broker.dead[queue] == []


class TestDeliveryLogEndpoints:

    def test_paginated_history(self, client):
        row = SimpleNamespace(
            id=uuid.uuid4(),
            channel="email",
            status="sent",
            message_id="msg_1",
            delivery_id="email-1",
            retry_count=0,
            payload_preview='{"bookingId":"b1"}',
            error=None,
            created_at=datetime.now(timezone.utc),
        )
        repository = StubLogRepository(rows=[row])
        client.app.dependency_overrides[get_log_repository] = lambda: repository

        response = client.get("/api/notifications/u1?page=2&limit=5&status=sent")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["notifications"][0]["messageId"] == "msg_1"
        assert data["pagination"] == {"page": 2, "limit": 5, "total": 1, "pages": 1}
        assert repository.calls[0]["offset"] == 5
        assert repository.calls[0]["status"] == "sent"

    def test_stats(self, client):
        client.app.dependency_overrides[get_log_repository] = lambda: StubLogRepository()

        response = client.get("/api/notifications/u1/stats")

        assert response.status_code == 200
        assert response.json()["data"]["stats"][0]["channel"] == "email"

    def test_internal_errors_use_error_shape(self, client):
        client.app.dependency_overrides[get_log_repository] = lambda: StubLogRepository(
            error=RuntimeError("database down")
        )

        response = client.get("/api/notifications/u1")

        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == "internal_error"


class TestOperationalEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "notifier_messages_published_total" in response.text
