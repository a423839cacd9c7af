"""
Mock Notification Service

Development stand-in: nothing leaves the process. Every message is logged
and kept in `sent`, and waitlist offers log their confirm link so the flow
can be driven by hand from the API docs.
"""

import asyncio
import random
import uuid
import logging
from typing import Optional

from tablewise.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OfferNotice,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _fake_send(self, channel: str, to: str, summary: str) -> NotificationResult:
        await asyncio.sleep(random.uniform(*self.latency))

        if random.random() < self.failure_rate:
            logger.warning(f"Mock {channel} to {to} failed (simulated)")
            return NotificationResult(
                success=False,
                error_message=f"Simulated {channel} failure",
                provider="mock",
            )

        message_id = f"{channel}_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": channel, "to": to, "summary": summary, "id": message_id})
        logger.info(f"Mock {channel} to {to}: {summary[:60]} (ID: {message_id})")
        return NotificationResult(success=True, message_id=message_id, provider="mock")

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        return await self._fake_send("sms", to_phone, message)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        return await self._fake_send("email", to_email, subject)

    async def send_waitlist_offer(self, notice: OfferNotice) -> NotificationResult:
        logger.info(
            f"📨 Offer for entry #{notice.entry_id} ({notice.customer_name}, party of "
            f"{notice.party_size}) held until {notice.expires_at:%H:%M:%S} UTC. "
            f"Confirm: POST {notice.confirm_url}"
        )
        return await super().send_waitlist_offer(notice)

    async def health_check(self) -> bool:
        return True
