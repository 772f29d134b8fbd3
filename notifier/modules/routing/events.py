"""Event categories, delivery channels, queues and the event-type routing table."""

from enum import Enum

from notifier.core.exceptions import UnresolvedEventType


class NotificationChannel(str, Enum):
    """Delivery media, in the order they are attempted."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class Category(str, Enum):
    """Coarse event groupings; each one owns a queue and a template set."""
    BOOKING = "booking"
    WALLET = "wallet"
    EXPENSE = "expense"
    REWARDS = "rewards"

    @property
    def queue_name(self) -> str:
        return QUEUES[self]

    @property
    def queue_type(self) -> str:
        """Upper-case tag stamped on envelopes (``queueType``)."""
        return self.name


QUEUES: dict[Category, str] = {
    Category.BOOKING: "booking_notifications",
    Category.WALLET: "wallet_notifications",
    Category.EXPENSE: "expense_notifications",
    Category.REWARDS: "rewards_notifications",
}

EVENT_CATEGORY_MAP: dict[str, Category] = {
    # Booking events
    "booking": Category.BOOKING,
    "booking_confirmed": Category.BOOKING,
    "booking_cancelled": Category.BOOKING,
    "booking_updated": Category.BOOKING,

    # Wallet events
    "wallet": Category.WALLET,
    "wallet_debited": Category.WALLET,
    "wallet_credited": Category.WALLET,
    "wallet_transfer": Category.WALLET,

    # Expense events
    "expense": Category.EXPENSE,
    "expense_approved": Category.EXPENSE,
    "expense_rejected": Category.EXPENSE,
    "expense_submitted": Category.EXPENSE,

    # Rewards events
    "rewards": Category.REWARDS,
    "rewards_credited": Category.REWARDS,
    "rewards_expired": Category.REWARDS,
    "rewards_used": Category.REWARDS,
}


def supported_event_types() -> list[str]:
    return sorted(EVENT_CATEGORY_MAP)


def resolve_category(event_type: str) -> Category:
    """Map a fine-grained event type to its category.

    Lookup is case-insensitive.

    Raises:
        UnresolvedEventType: If the event type is not in the routing table
    """
    category = EVENT_CATEGORY_MAP.get((event_type or "").strip().lower())
    if category is None:
        raise UnresolvedEventType(event_type, supported_event_types())
    return category


def category_from_queue_type(queue_type: str) -> Category:
    """Inverse of ``Category.queue_type``; accepts either case."""
    try:
        return Category[queue_type.upper()]
    except KeyError:
        return Category(queue_type.lower())
