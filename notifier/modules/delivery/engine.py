"""Dispatch engine.

Turns one envelope into zero or more channel deliveries:

1. resolve the user's channel preferences (fail-open),
2. render the category's templates,
3. for every channel that is enabled and has a contact target in the
   payload, call the channel sender,
4. record every attempt in the delivery log.

Channel sends are isolated from each other: one failing or timing out never
prevents the others. ``dispatch`` never raises; it reports a DeliveryOutcome.
"""

import asyncio
import logging
import time
from typing import Mapping, Optional, Protocol

from notifier.core.exceptions import ChannelDeliveryError
from notifier.core.logging import log_error, log_info, log_warning
from notifier.core.metrics import DISPATCH_DURATION_SECONDS, record_channel_delivery
from notifier.core.tracing import create_span, record_exception
from notifier.modules.delivery.channels import ChannelSender, SendReceipt
from notifier.modules.delivery.models import DeliveryStatus, SYSTEM_CHANNEL
from notifier.modules.delivery.schemas import DeliveryAttempt, DeliveryOutcome, payload_preview
from notifier.modules.delivery.templates import RenderedContent, render
from notifier.modules.preference.schemas import ChannelPreferences
from notifier.modules.routing.events import NotificationChannel
from notifier.modules.routing.schemas import NotificationEnvelope

logger = logging.getLogger(__name__)

# Payload key holding each channel's contact target
CHANNEL_TARGET_KEYS: dict[NotificationChannel, str] = {
    NotificationChannel.EMAIL: "email",
    NotificationChannel.SMS: "phone",
    NotificationChannel.PUSH: "deviceToken",
}

HINT_POLICY_ADVISORY = "advisory"
HINT_POLICY_RESTRICT = "restrict"


class PreferenceSource(Protocol):
    async def get(self, user_id: str) -> ChannelPreferences: ...


class DeliveryLog(Protocol):
    async def record(self, attempt: DeliveryAttempt) -> bool: ...


def content_for(channel: NotificationChannel, rendered: RenderedContent):
    if channel == NotificationChannel.EMAIL:
        return rendered.email
    if channel == NotificationChannel.SMS:
        return rendered.sms
    return rendered.push


class DispatchEngine:
    """Orchestrates preferences, templates, senders and the delivery log."""

    def __init__(
        self,
        preferences: PreferenceSource,
        senders: Mapping[NotificationChannel, ChannelSender],
        delivery_log: DeliveryLog,
        channel_timeout: Optional[float] = 10.0,
        hint_policy: str = HINT_POLICY_ADVISORY,
    ):
        if hint_policy not in (HINT_POLICY_ADVISORY, HINT_POLICY_RESTRICT):
            raise ValueError(f"Unknown channel hint policy: {hint_policy}")
        self.preferences = preferences
        self.senders = dict(senders)
        self.delivery_log = delivery_log
        self.channel_timeout = channel_timeout
        self.hint_policy = hint_policy

    async def dispatch(self, envelope: NotificationEnvelope, retry_count: int = 0) -> DeliveryOutcome:
        """Deliver one envelope to every applicable channel."""
        started = time.perf_counter()
        category = envelope.queue_type.lower()

        with create_span(
            "notification.dispatch",
            attributes={
                "message_id": envelope.message_id,
                "event_type": envelope.event_type,
                "category": category,
            },
        ):
            try:
                preferences = await self.preferences.get(envelope.user_id)
                rendered = render(envelope.category, envelope.payload)
                channels = self._select_channels(envelope, preferences)
            except Exception as e:
                # Abort before any channel attempt
                record_exception(e)
                return await self._abort(envelope, retry_count, e)

            attempts = list(await asyncio.gather(*(
                self._attempt(envelope, channel, target, content_for(channel, rendered), retry_count)
                for channel, target in channels
            )))

            log_failures = 0
            for attempt in attempts:
                if not await self.delivery_log.record(attempt):
                    log_failures += 1

        DISPATCH_DURATION_SECONDS.labels(category=category).observe(time.perf_counter() - started)
        outcome = DeliveryOutcome(
            message_id=envelope.message_id,
            success=True,
            attempts=attempts,
            log_failures=log_failures,
        )
        log_info(
            logger,
            "Notification dispatch completed",
            message_id=envelope.message_id,
            user_id=envelope.user_id,
            **outcome.summary(),
        )
        return outcome

    def _select_channels(
        self,
        envelope: NotificationEnvelope,
        preferences: ChannelPreferences,
    ) -> list[tuple[NotificationChannel, str]]:
        """Channels that are enabled, wanted and have a contact target."""
        requested = set(envelope.channels or [])
        selected = []

        for channel in NotificationChannel:
            if not preferences.is_enabled(channel):
                continue
            if self.hint_policy == HINT_POLICY_RESTRICT and requested and channel not in requested:
                continue
            target = envelope.payload.get(CHANNEL_TARGET_KEYS[channel])
            if not target:
                continue
            if channel not in self.senders:
                log_warning(logger, "No sender registered for channel", channel=channel.value)
                continue
            selected.append((channel, str(target)))

        return selected

    async def _attempt(
        self,
        envelope: NotificationEnvelope,
        channel: NotificationChannel,
        target: str,
        content,
        retry_count: int,
    ) -> DeliveryAttempt:
        """Send on one channel, converting any failure into a failed attempt."""
        sender = self.senders[channel]
        receipt: Optional[SendReceipt] = None
        error: Optional[str] = None

        try:
            receipt = await asyncio.wait_for(sender.send(target, content), self.channel_timeout)
        except asyncio.TimeoutError:
            error = f"{channel.value} send timed out after {self.channel_timeout}s"
        except ChannelDeliveryError as e:
            error = e.message
        except Exception as e:
            error = str(e) or type(e).__name__

        status = DeliveryStatus.SENT if receipt else DeliveryStatus.FAILED
        record_channel_delivery(channel.value, status.value)

        if error:
            log_warning(
                logger,
                "Channel delivery failed",
                channel=channel.value,
                message_id=envelope.message_id,
                error=error,
            )

        return DeliveryAttempt(
            user_id=envelope.user_id,
            channel=channel.value,
            status=status,
            message_id=envelope.message_id,
            payload_preview=payload_preview(envelope.payload),
            retry_count=retry_count,
            event_type=envelope.event_type,
            delivery_id=receipt.delivery_id if receipt else None,
            error=error,
        )

    async def _abort(
        self,
        envelope: NotificationEnvelope,
        retry_count: int,
        exc: Exception,
    ) -> DeliveryOutcome:
        log_error(
            logger,
            "Notification dispatch aborted",
            exc,
            message_id=envelope.message_id,
            user_id=envelope.user_id,
        )
        attempt = DeliveryAttempt(
            user_id=envelope.user_id,
            channel=SYSTEM_CHANNEL,
            status=DeliveryStatus.FAILED,
            message_id=envelope.message_id,
            payload_preview=payload_preview(envelope.payload),
            retry_count=retry_count,
            event_type=envelope.event_type,
            error=str(exc) or type(exc).__name__,
        )
        logged = await self.delivery_log.record(attempt)
        return DeliveryOutcome(
            message_id=envelope.message_id,
            success=False,
            attempts=[attempt],
            error=attempt.error,
            log_failures=0 if logged else 1,
        )
