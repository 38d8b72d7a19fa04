"""
Mock Notification Service

Development provider: nothing leaves the process. Every message is logged
and kept in ``outbox`` so local tooling and tests can read the links and
codes that would have been emailed.

Version: 1.0.0
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from stallfront.services.notifications.base import BaseNotificationService, NotificationResult

logger = logging.getLogger(__name__)


@dataclass
class SentMessage:
    channel: str  # "email" or "sms"
    to: str
    subject: str
    body: str
    message_id: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(self, latency_seconds: float = 0.0, max_outbox: int = 500):
        self.latency_seconds = latency_seconds
        self.max_outbox = max_outbox
        self.outbox: list[SentMessage] = []
        logger.info(f"MockNotificationService initialized (latency={latency_seconds}s)")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

    def _record(self, message: SentMessage) -> None:
        self.outbox.append(message)
        if len(self.outbox) > self.max_outbox:
            del self.outbox[: len(self.outbox) - self.max_outbox]

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Pretend to send an email."""
        await self._simulate_latency()
        message_id = f"email_mock_{uuid.uuid4().hex[:12]}"
        self._record(SentMessage("email", to_email, subject, body_html, message_id))
        logger.info(f"Mock email sent to {to_email}: {subject} (ID: {message_id})")
        return NotificationResult(success=True, message_id=message_id, provider="mock")

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        """Pretend to send an SMS."""
        await self._simulate_latency()
        message_id = f"sms_mock_{uuid.uuid4().hex[:12]}"
        self._record(SentMessage("sms", to_phone, "", message, message_id))
        logger.info(f"Mock SMS sent to {to_phone}: {message[:50]} (ID: {message_id})")
        return NotificationResult(success=True, message_id=message_id, provider="mock")

    def messages_to(self, address: str) -> list[SentMessage]:
        return [m for m in self.outbox if m.to == address]

    def clear(self) -> None:
        self.outbox.clear()

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
