"""Prometheus metrics for the dispatch pipeline.

Tracks publish volume, per-channel delivery outcomes, consumer
acknowledgment decisions and queue depth.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

REGISTRY = CollectorRegistry()

# Running under gunicorn with several workers
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "notifier_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


# ============================================
# Publisher Metrics
# ============================================
MESSAGES_PUBLISHED_TOTAL = Counter(
    "notifier_messages_published_total",
    "Messages enqueued by the publisher",
    ["queue_name"],
    registry=REGISTRY,
)

PUBLISH_REJECTED_TOTAL = Counter(
    "notifier_publish_rejected_total",
    "Publish calls rejected at validation",
    ["reason"],
    registry=REGISTRY,
)


# ============================================
# Consumer / Dispatch Metrics
# ============================================
CONSUMER_OUTCOMES_TOTAL = Counter(
    "notifier_consumer_outcomes_total",
    "Acknowledgment decisions taken by consumers",
    ["queue_name", "outcome"],
    registry=REGISTRY,
)

CHANNEL_DELIVERIES_TOTAL = Counter(
    "notifier_channel_deliveries_total",
    "Channel delivery attempts",
    ["channel", "status"],
    registry=REGISTRY,
)

DISPATCH_DURATION_SECONDS = Histogram(
    "notifier_dispatch_duration_seconds",
    "Time spent dispatching one message",
    ["category"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

QUEUE_DEPTH = Gauge(
    "notifier_queue_depth",
    "Messages waiting in a queue",
    ["queue_name", "state"],
    registry=REGISTRY,
)


def record_consumer_outcome(queue_name: str, outcome: str) -> None:
    CONSUMER_OUTCOMES_TOTAL.labels(queue_name=queue_name, outcome=outcome).inc()


def record_channel_delivery(channel: str, status: str) -> None:
    CHANNEL_DELIVERIES_TOTAL.labels(channel=channel, status=status).inc()


def update_queue_depth(queue_name: str, ready: int, dead_letter: int) -> None:
    """Update queue depth gauges from a stats snapshot."""
    QUEUE_DEPTH.labels(queue_name=queue_name, state="ready").set(ready)
    QUEUE_DEPTH.labels(queue_name=queue_name, state="dead_letter").set(dead_letter)


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
