"""Channel senders for email, SMS and push delivery.

Every sender implements the same contract: ``send(target, content)`` returns
a SendReceipt carrying a provider delivery id, or raises
ChannelDeliveryError. Providers that are not configured simulate delivery.
"""

import asyncio
import logging
import smtplib
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import httpx

from notifier.core.config import Settings, settings as default_settings
from notifier.core.exceptions import ChannelDeliveryError
from notifier.modules.delivery.templates import EmailContent, PushContent
from notifier.modules.routing.events import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendReceipt:
    """Result of a successful channel send."""
    channel: str
    delivery_id: str
    recipient: str
    simulated: bool = False


def generate_delivery_id(channel: str) -> str:
    return f"{channel}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ChannelSender(ABC):
    """Base class for channel senders."""

    channel: NotificationChannel

    @abstractmethod
    async def send(self, target: str, content: Any) -> SendReceipt:
        """Deliver content to a channel-specific target.

        Args:
            target: Email address, phone number or device token
            content: Channel content produced by the template renderer

        Returns:
            SendReceipt with the provider delivery id

        Raises:
            ChannelDeliveryError: If the provider rejected or failed the send
        """

    def _receipt(self, target: str, delivery_id: Optional[str] = None, simulated: bool = False) -> SendReceipt:
        return SendReceipt(
            channel=self.channel.value,
            delivery_id=delivery_id or generate_delivery_id(self.channel.value),
            recipient=target,
            simulated=simulated,
        )


class EmailSender(ChannelSender):
    """Email delivery over SMTP."""

    channel = NotificationChannel.EMAIL

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    async def send(self, target: str, content: EmailContent) -> SendReceipt:
        if not self.config.SMTP_HOST:
            logger.info(
                "SMTP not configured, simulating email delivery",
                extra={"recipient": target, "subject": content.subject},
            )
            return self._receipt(target, simulated=True)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = self.config.SMTP_FROM_EMAIL
        msg["To"] = target
        msg["Message-ID"] = f"<{uuid.uuid4().hex}@{self.config.SMTP_HOST}>"
        msg["X-Priority"] = "1"
        msg.attach(MIMEText(content.body, "html"))

        try:
            # smtplib blocks, keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_smtp, target, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(self.channel.value, f"Email delivery failed: {e}") from e

        return self._receipt(target, delivery_id=msg["Message-ID"])

    def _send_smtp(self, recipient: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(
            self.config.SMTP_HOST,
            self.config.SMTP_PORT,
            timeout=self.config.CHANNEL_SEND_TIMEOUT_SECONDS,
        ) as server:
            if self.config.SMTP_TLS:
                server.starttls()

            if self.config.SMTP_USER and self.config.SMTP_PASSWORD:
                server.login(self.config.SMTP_USER, self.config.SMTP_PASSWORD)

            server.sendmail(self.config.SMTP_FROM_EMAIL, recipient, msg.as_string())


class _HttpProviderSender(ChannelSender):
    """Sender that posts JSON to an HTTP provider endpoint."""

    provider_url_setting: str = ""

    def __init__(self, config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or default_settings
        self.client = client

    @property
    def provider_url(self) -> str:
        return getattr(self.config, self.provider_url_setting, "")

    def _headers(self) -> dict:
        return {}

    async def _post(self, target: str, body: dict) -> SendReceipt:
        try:
            if self.client is not None:
                response = await self.client.post(self.provider_url, json=body, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(self.provider_url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.channel.value, f"{self.channel.value} provider error: {e}") from e

        if response.status_code >= 400:
            raise ChannelDeliveryError(
                self.channel.value,
                f"{self.channel.value} provider returned {response.status_code}: {response.text}",
            )

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return self._receipt(target, delivery_id=data.get("id") or data.get("messageId"))


class SMSSender(_HttpProviderSender):
    """SMS delivery through an HTTP SMS gateway."""

    channel = NotificationChannel.SMS
    provider_url_setting = "SMS_PROVIDER_URL"

    # Single-segment SMS length
    MAX_LENGTH = 160

    async def send(self, target: str, content: str) -> SendReceipt:
        text = content if len(content) <= self.MAX_LENGTH else content[: self.MAX_LENGTH - 3] + "..."

        if not self.provider_url:
            logger.info("SMS provider not configured, simulating delivery", extra={"recipient": target})
            return self._receipt(target, simulated=True)

        return await self._post(
            target,
            {"to": target, "from": self.config.SMS_FROM_NUMBER, "body": text},
        )


class PushSender(_HttpProviderSender):
    """Push delivery through an FCM-style HTTP endpoint."""

    channel = NotificationChannel.PUSH
    provider_url_setting = "PUSH_PROVIDER_URL"

    def _headers(self) -> dict:
        if self.config.PUSH_SERVER_KEY:
            return {"Authorization": f"key={self.config.PUSH_SERVER_KEY}"}
        return {}

    async def send(self, target: str, content: PushContent) -> SendReceipt:
        if not self.provider_url:
            logger.info("Push provider not configured, simulating delivery", extra={"recipient": target})
            return self._receipt(target, simulated=True)

        return await self._post(
            target,
            {
                "to": target,
                "notification": {"title": content.title, "body": content.body},
                "priority": "high",
            },
        )


def default_senders(config: Optional[Settings] = None) -> dict[NotificationChannel, ChannelSender]:
    """One sender per channel, configured from settings."""
    return {
        NotificationChannel.EMAIL: EmailSender(config),
        NotificationChannel.SMS: SMSSender(config),
        NotificationChannel.PUSH: PushSender(config),
    }
