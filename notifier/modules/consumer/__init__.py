"""Consumer module: generic queue consumer, category validators and supervisor."""

from notifier.modules.consumer.supervisor import ConsumerSupervisor
from notifier.modules.consumer.validators import (
    CATEGORY_REQUIRED_FIELDS,
    CategoryStrategy,
    parse_envelope,
    strategy_for,
    validate_payload,
)
from notifier.modules.consumer.worker import MessageState, QueueConsumer

__all__ = [
    "CATEGORY_REQUIRED_FIELDS",
    "CategoryStrategy",
    "ConsumerSupervisor",
    "MessageState",
    "QueueConsumer",
    "parse_envelope",
    "strategy_for",
    "validate_payload",
]
