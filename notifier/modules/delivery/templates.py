"""Message templates per event category.

Rendering is a pure function of (category, payload): no clock, no I/O, so
the same input always renders byte-identical content.
"""

import html
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from notifier.modules.routing.events import Category

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]

MISSING_VALUE = "N/A"


@dataclass(frozen=True)
class EmailContent:
    subject: str
    body: str


@dataclass(frozen=True)
class PushContent:
    title: str
    body: str


@dataclass(frozen=True)
class RenderedContent:
    """Content for every channel, rendered from one payload."""
    email: EmailContent
    sms: str
    push: PushContent


@dataclass(frozen=True)
class CategoryTemplates:
    email_subject: str
    email_body: Callable[[Payload], str]
    sms: Callable[[Payload], str]
    push_title: str
    push_body: Callable[[Payload], str]


def _value(data: Payload, key: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        return MISSING_VALUE
    return str(value)


def _html(data: Payload, key: str) -> str:
    return html.escape(_value(data, key))


def _email_html(heading: str, intro: str, rows: list[tuple[str, str]], data: Payload) -> str:
    lines = [f"<h2>{html.escape(heading)}</h2>"]
    if intro:
        lines.append(f"<p>{intro}</p>")
    for label, key in rows:
        lines.append(f"<p><strong>{label}:</strong> {_html(data, key)}</p>")
    return "\n".join(lines)


# ==================== Booking ====================

def _booking_email(data: Payload) -> str:
    return _email_html(
        "Booking Confirmation",
        "Your booking has been confirmed!",
        [
            ("Booking ID", "bookingId"),
            ("Hotel", "hotelName"),
            ("Check-in", "checkIn"),
            ("Check-out", "checkOut"),
            ("Amount", "amount"),
        ],
        data,
    )


def _booking_sms(data: Payload) -> str:
    return (
        f"Booking confirmed! ID: {_value(data, 'bookingId')}, "
        f"Hotel: {_value(data, 'hotelName')}, Amount: ${_value(data, 'amount')}"
    )


def _booking_push(data: Payload) -> str:
    return f"Your booking at {_value(data, 'hotelName')} has been confirmed"


# ==================== Wallet ====================

def _wallet_email(data: Payload) -> str:
    return _email_html(
        "Wallet Transaction",
        "",
        [
            ("Transaction ID", "transactionId"),
            ("Amount", "amount"),
            ("Balance", "balance"),
            ("Description", "description"),
        ],
        data,
    )


def _wallet_sms(data: Payload) -> str:
    return (
        f"Wallet: {_value(data, 'description')} - ${_value(data, 'amount')}. "
        f"Balance: ${_value(data, 'balance')}"
    )


def _wallet_push(data: Payload) -> str:
    return f"{_value(data, 'description')}: ${_value(data, 'amount')}"


# ==================== Expense ====================

def _expense_email(data: Payload) -> str:
    return _email_html(
        f"Expense {_value(data, 'status')}",
        "",
        [
            ("Expense ID", "expenseId"),
            ("Amount", "amount"),
            ("Category", "category"),
            ("Description", "description"),
            ("Status", "status"),
        ],
        data,
    )


def _expense_sms(data: Payload) -> str:
    return (
        f"Expense {_value(data, 'status')}: ${_value(data, 'amount')} - "
        f"{_value(data, 'description')}"
    )


def _expense_push(data: Payload) -> str:
    return f"Your expense of ${_value(data, 'amount')} has been {_value(data, 'status')}"


# ==================== Rewards ====================

def _rewards_email(data: Payload) -> str:
    return _email_html(
        "Rewards Update",
        "",
        [
            ("Reward ID", "rewardId"),
            ("Points", "points"),
            ("Total Points", "totalPoints"),
            ("Source", "source"),
        ],
        data,
    )


def _rewards_sms(data: Payload) -> str:
    return (
        f"Rewards: +{_value(data, 'points')} points from {_value(data, 'source')}. "
        f"Total: {_value(data, 'totalPoints')}"
    )


def _rewards_push(data: Payload) -> str:
    return f"You earned {_value(data, 'points')} points from {_value(data, 'source')}"


TEMPLATES: dict[Category, CategoryTemplates] = {
    Category.BOOKING: CategoryTemplates(
        email_subject="Booking Confirmation",
        email_body=_booking_email,
        sms=_booking_sms,
        push_title="Booking Confirmed",
        push_body=_booking_push,
    ),
    Category.WALLET: CategoryTemplates(
        email_subject="Wallet Transaction",
        email_body=_wallet_email,
        sms=_wallet_sms,
        push_title="Wallet Transaction",
        push_body=_wallet_push,
    ),
    Category.EXPENSE: CategoryTemplates(
        email_subject="Expense Update",
        email_body=_expense_email,
        sms=_expense_sms,
        push_title="Expense Update",
        push_body=_expense_push,
    ),
    Category.REWARDS: CategoryTemplates(
        email_subject="Rewards Update",
        email_body=_rewards_email,
        sms=_rewards_sms,
        push_title="Rewards Update",
        push_body=_rewards_push,
    ),
}

DEFAULT_CATEGORY = Category.BOOKING


def templates_for(category: Union[Category, str]) -> CategoryTemplates:
    """Template set for a category.

    Routing rejects unknown event types before enqueue, so the fallback to
    DEFAULT_CATEGORY should never be taken; it is logged when it is.
    """
    try:
        return TEMPLATES[Category(category)]
    except (ValueError, KeyError):
        logger.warning(
            "No templates for category, falling back to default",
            extra={"category": str(category), "fallback": DEFAULT_CATEGORY.value},
        )
        return TEMPLATES[DEFAULT_CATEGORY]


def render(category: Union[Category, str], payload: Payload) -> RenderedContent:
    """Render email, SMS and push content for a payload."""
    templates = templates_for(category)
    return RenderedContent(
        email=EmailContent(subject=templates.email_subject, body=templates.email_body(payload)),
        sms=templates.sms(payload),
        push=PushContent(title=templates.push_title, body=templates.push_body(payload)),
    )
