"""OpenTelemetry tracing for the dispatch pipeline.

A notification is traced across the queue: the publisher injects the W3C
``traceparent`` of its span into the broker message headers, and the consumer
continues that trace when it picks the message up. The HTTP request that
produced a notification, its publish, and every channel attempt of its
dispatch therefore share one trace id.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.propagate import extract, inject, set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

MESSAGING_SYSTEM = "redis"

_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install the global tracer provider and W3C propagation.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        environment: Deployment environment
        otlp_endpoint: OTLP collector endpoint; spans are only exported when set
        enable_console_export: Print spans to stdout (debugging)

    Returns:
        Configured tracer instance
    """
    global _tracer, _provider

    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    })
    _provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTLP exporter not installed, spans will not be exported")
        else:
            _provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )
            logger.info("OTLP tracing enabled", extra={"otlp_endpoint": otlp_endpoint})

    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    set_global_textmap(TraceContextTextMapPropagator())
    _tracer = trace.get_tracer(service_name, service_version)
    return _tracer


def get_tracer() -> trace.Tracer:
    """The configured tracer, or the global (no-op until setup) one."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def get_trace_id() -> Optional[str]:
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        return format(context.trace_id, "032x")
    return None


def get_span_id() -> Optional[str]:
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        return format(context.span_id, "016x")
    return None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict] = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Run the block inside a child span of the current one."""
    with get_tracer().start_as_current_span(name, kind=kind, attributes=attributes or {}) as span:
        yield span


@contextmanager
def message_span(
    name: str,
    queue: str,
    message_id: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    kind: SpanKind = SpanKind.PRODUCER,
) -> Iterator[Span]:
    """Span for producing or consuming one queue message.

    Consumer spans pass the delivered ``headers`` so the span joins the trace
    the publisher injected; producer spans start from the current context.
    """
    attributes = {
        "messaging.system": MESSAGING_SYSTEM,
        "messaging.destination.name": queue,
    }
    if message_id:
        attributes["messaging.message.id"] = message_id

    parent = extract(dict(headers)) if headers else None
    with get_tracer().start_as_current_span(
        name,
        context=parent,
        kind=kind,
        attributes=attributes,
    ) as span:
        yield span


def inject_trace_headers(headers: dict) -> dict:
    """Add ``traceparent``/``tracestate`` for the current span to ``headers``."""
    inject(headers)
    return headers


def record_exception(exception: BaseException, attributes: Optional[dict] = None) -> None:
    """Mark the current span as failed with ``exception``."""
    span = trace.get_current_span()
    span.record_exception(exception, attributes=attributes)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and shut the provider down."""
    global _provider
    if _provider:
        _provider.shutdown()
        _provider = None
        logger.info("Tracing shutdown complete")
