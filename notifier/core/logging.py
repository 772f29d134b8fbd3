"""Structured JSON logging for the dispatch pipeline.

Two contexts feed every log line:

* HTTP requests carry an ``X-Correlation-ID`` (see CorrelationIdMiddleware).
* Queue messages are handled inside ``message_context``, which stamps the
  queue name and the envelope's messageId on each line and reuses the
  messageId as the correlation id, so the publish-side and consume-side lines
  of one notification share it.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from notifier.core.tracing import get_span_id, get_trace_id

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
message_id_var: ContextVar[Optional[str]] = ContextVar("message_id", default=None)
queue_var: ContextVar[Optional[str]] = ContextVar("queue", default=None)

# LogRecord attributes that are not user supplied extras
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "correlation_id",
))


def get_correlation_id() -> str:
    """Current correlation id; falls back to the trace id, then a fresh uuid."""
    cid = correlation_id_var.get()
    if cid is None:
        trace_id = get_trace_id()
        if trace_id:
            return trace_id
        cid = str(uuid.uuid4())
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


@contextmanager
def message_context(queue: str, message_id: Optional[str] = None) -> Iterator[None]:
    """Bind a queue message to every log line emitted inside the block.

    The previous context is restored on exit, so one consumer task can handle
    message after message without leaking ids between them.
    """
    tokens = (
        (queue_var, queue_var.set(queue)),
        (message_id_var, message_id_var.set(message_id)),
        (correlation_id_var, correlation_id_var.set(message_id)),
    )
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def bind_message_id(message_id: str) -> None:
    """Replace the provisional id once the envelope has been parsed."""
    message_id_var.set(message_id)
    correlation_id_var.set(message_id)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line with correlation, message and trace context."""

    def __init__(self, service: Optional[str] = None, include_stack_trace: bool = True):
        super().__init__()
        self.service = service
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        if self.service:
            log_data["service"] = self.service

        queue = queue_var.get()
        message_id = message_id_var.get()
        if queue:
            log_data["queue"] = queue
        if message_id:
            log_data["message_id"] = message_id

        trace_id = get_trace_id()
        if trace_id:
            log_data["trace_id"] = trace_id
            log_data["span_id"] = get_span_id()

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and self.include_stack_trace:
            exc_type, exc_value, exc_tb = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stack_trace": traceback.format_exception(*record.exc_info) if exc_tb else None,
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                extra_fields[key] = value
            except (TypeError, ValueError):
                extra_fields[key] = str(value)
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id to every record for the plain-text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service: Optional[str] = None,
) -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(CorrelationIdFilter())

    if json_format:
        formatter = StructuredFormatter(service=service)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(correlation_id)s] - %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with optional exception info and extra fields."""
    if exception:
        logger.error(message, exc_info=exception, extra=extra)
    else:
        logger.error(message, extra=extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    logger.warning(message, extra=extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    logger.info(message, extra=extra)
