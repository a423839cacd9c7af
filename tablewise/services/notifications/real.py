"""
Real Notification Service

Production delivery for guest messages:
- Twilio SMS carries the short text of every notice
- SendGrid email carries the styled version, with a confirm button for
  waitlist offers

Both client libraries block, so calls run in a worker thread.
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from tablewise.core.config import get_settings
from tablewise.services.notifications.base import (
    BaseNotificationService,
    BookingNotice,
    NotificationResult,
    OfferNotice,
)

logger = logging.getLogger(__name__)
settings = get_settings()

EMAIL_SHELL = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h1 style="color: #2f7d5b;">{title}</h1>
    <p>Hi {name},</p>
    {body}
    <p style="color: #666; font-size: 12px;">{restaurant}</p>
</div>
"""


def slot_details(party_size: int, on, at, table_number: Optional[str] = None) -> str:
    table = f"<p>Table: <strong>{table_number}</strong></p>" if table_number else ""
    return (
        '<div style="background: #f8f9fa; padding: 15px; border-radius: 8px; margin: 20px 0;">'
        f"<p><strong>{on:%A %d %B %Y} at {at:%H:%M}</strong></p>"
        f"<p>Party of {party_size}</p>{table}</div>"
    )


class RealNotificationService(BaseNotificationService):
    """Twilio SMS and SendGrid email for booking confirmations and table offers."""

    def __init__(self):
        self.twilio_client = None
        self.sendgrid_client = None

        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        else:
            logger.warning("Twilio credentials not configured; guests get no SMS")

        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
        else:
            logger.warning("SendGrid credentials not configured; guests get no email")

        logger.info(
            f"RealNotificationService initialized "
            f"(sms={'on' if self.twilio_client else 'off'}, "
            f"email={'on' if self.sendgrid_client else 'off'})"
        )

    @property
    def provider_name(self) -> str:
        return "real"

    # =========================================================================
    # CHANNELS
    # =========================================================================

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        if not self.twilio_client:
            return NotificationResult(success=False, error_message="Twilio not configured", provider="twilio")

        try:
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=settings.twilio_phone_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio error for {to_phone}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="twilio")

        logger.info(f"SMS sent to {to_phone}: {result.sid}")
        return NotificationResult(success=True, message_id=result.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        if not self.sendgrid_client:
            return NotificationResult(success=False, error_message="SendGrid not configured", provider="sendgrid")

        mail = Mail(
            from_email=settings.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, mail)
        except Exception as e:
            # python-http-client raises per status code; treat any as a failed send
            logger.error(f"SendGrid error for {to_email}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="sendgrid")

        logger.info(f"Email sent to {to_email}: {response.status_code}")
        return NotificationResult(
            success=response.status_code in (200, 201, 202),
            message_id=response.headers.get("X-Message-Id"),
            provider="sendgrid",
        )

    # =========================================================================
    # GUEST MESSAGES
    # =========================================================================

    async def _deliver(
        self, phone: str, email: Optional[str], text: str, subject: str, html: str
    ) -> NotificationResult:
        sms = await self.send_sms(phone, text)
        mail = await self.send_email(email, subject, html, text) if email else None
        return NotificationResult(
            success=sms.success or bool(mail and mail.success),
            message_id=sms.message_id or (mail.message_id if mail else None),
            error_message=None if sms.success else sms.error_message,
            provider=self.provider_name,
        )

    async def send_booking_confirmation(self, notice: BookingNotice) -> NotificationResult:
        opener = "A table opened up for you. " if notice.was_on_waitlist else ""
        html = EMAIL_SHELL.format(
            title="Booking Confirmed",
            name=notice.customer_name,
            body=(
                f"<p>{opener}Your booking <strong>#{notice.booking_id}</strong> is confirmed.</p>"
                + slot_details(notice.party_size, notice.booking_date, notice.booking_time, notice.table_number)
            ),
            restaurant=notice.restaurant_name,
        )
        return await self._deliver(
            notice.customer_phone,
            notice.customer_email,
            notice.sms_text(),
            f"Booking Confirmed #{notice.booking_id} - {notice.restaurant_name}",
            html,
        )

    async def send_waitlist_offer(self, notice: OfferNotice) -> NotificationResult:
        html = EMAIL_SHELL.format(
            title="A table is free for you",
            name=notice.customer_name,
            body=(
                "<p>A table matching your waiting list request just opened up.</p>"
                + slot_details(notice.party_size, notice.requested_date, notice.requested_time)
                + f'<a href="{notice.confirm_url}" style="display: inline-block; background: #2f7d5b; '
                'color: white; padding: 15px 30px; text-decoration: none; border-radius: 8px;">'
                "Confirm my table</a>"
                f"<p>We hold it until {notice.expires_at:%H:%M} UTC.</p>"
            ),
            restaurant=notice.restaurant_name,
        )
        return await self._deliver(
            notice.customer_phone,
            notice.customer_email,
            notice.sms_text(),
            f"Your table at {notice.restaurant_name} is waiting",
            html,
        )

    async def health_check(self) -> bool:
        """Healthy when at least one delivery channel is configured."""
        return bool(self.twilio_client or self.sendgrid_client)
