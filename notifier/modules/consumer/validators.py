"""Envelope parsing and per-category payload validation."""

from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from notifier.core.exceptions import MessageParseError
from notifier.modules.routing.events import Category
from notifier.modules.routing.schemas import NotificationEnvelope

# (payload key, label used in the error message)
CATEGORY_REQUIRED_FIELDS: dict[Category, tuple[tuple[str, str], ...]] = {
    Category.BOOKING: (("bookingId", "Booking ID"),),
    Category.WALLET: (("transactionId", "Transaction ID"), ("amount", "Amount")),
    Category.EXPENSE: (("expenseId", "Expense ID"), ("amount", "Amount"), ("status", "Status")),
    Category.REWARDS: (("rewardId", "Reward ID"), ("points", "Points"), ("source", "Source")),
}


def _missing(value) -> bool:
    # 0 and False are legitimate amounts/points
    return value is None or value == ""


def parse_envelope(body: str) -> NotificationEnvelope:
    """Decode a queue message body into an envelope.

    Raises:
        MessageParseError: If the body is not a valid envelope
    """
    try:
        return NotificationEnvelope.model_validate_json(body)
    except PydanticValidationError as e:
        raise MessageParseError(f"Malformed notification envelope: {e}") from e


def validate_payload(category: Category, envelope: NotificationEnvelope) -> None:
    """Check the category's required payload fields.

    Raises:
        MessageParseError: On the first missing field
    """
    for key, label in CATEGORY_REQUIRED_FIELDS.get(category, ()):
        if _missing(envelope.payload.get(key)):
            raise MessageParseError(f"{label} is required for {category.value} notifications")


@dataclass(frozen=True)
class CategoryStrategy:
    """What distinguishes one category's consumer from another."""
    category: Category
    validate: Callable[[NotificationEnvelope], None]

    @property
    def queue_name(self) -> str:
        return self.category.queue_name

    @property
    def consumer_tag(self) -> str:
        return f"{self.category.value}-consumer"


def strategy_for(category: Category) -> CategoryStrategy:
    def validate(envelope: NotificationEnvelope) -> None:
        if envelope.queue_type.upper() != category.queue_type:
            raise MessageParseError(
                f"Envelope for {envelope.queue_type} delivered to {category.queue_name}"
            )
        validate_payload(category, envelope)

    return CategoryStrategy(category=category, validate=validate)
