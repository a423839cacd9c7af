"""
Notification Service Abstract Base Class

Defines the interface the engine uses to tell guests about confirmed
bookings and waitlist offers. Supports both Mock (development) and Real
(production) implementations; delivery mechanics are up to each provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class BookingNotice:
    """A booking the guest should hear about."""
    booking_id: int
    restaurant_name: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    booking_date: date
    booking_time: time
    party_size: int
    table_number: Optional[str] = None
    was_on_waitlist: bool = False

    def sms_text(self) -> str:
        opener = "Good news! A table opened up. " if self.was_on_waitlist else ""
        return (
            f"Hi {self.customer_name}! {opener}Your booking #{self.booking_id} at "
            f"{self.restaurant_name} is confirmed for {self.party_size} on "
            f"{self.booking_date:%a %d %b} at {self.booking_time:%H:%M}."
        )


@dataclass
class OfferNotice:
    """A table offered to a waiting guest, valid until expires_at."""
    entry_id: int
    restaurant_name: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    requested_date: date
    requested_time: time
    party_size: int
    expires_at: datetime
    confirm_url: str

    def sms_text(self) -> str:
        return (
            f"Hi {self.customer_name}! A table for {self.party_size} at "
            f"{self.restaurant_name} is free on {self.requested_date:%a %d %b} at "
            f"{self.requested_time:%H:%M}. Confirm before {self.expires_at:%H:%M} UTC: "
            f"{self.confirm_url}"
        )


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    async def send_booking_confirmation(self, notice: BookingNotice) -> NotificationResult:
        """Send booking confirmation via SMS and, when known, email."""
        message = notice.sms_text()
        sms_result = await self.send_sms(notice.customer_phone, message)

        email_result = None
        if notice.customer_email:
            email_result = await self.send_email(
                to_email=notice.customer_email,
                subject=f"Booking Confirmed #{notice.booking_id} - {notice.restaurant_name}",
                body_html=f"<h1>Booking Confirmed</h1><p>{message}</p>",
                body_text=message,
            )

        return NotificationResult(
            success=sms_result.success or bool(email_result and email_result.success),
            message_id=sms_result.message_id,
            provider=self.provider_name,
        )

    async def send_waitlist_offer(self, notice: OfferNotice) -> NotificationResult:
        """Tell a waiting guest a table is being held for them."""
        message = notice.sms_text()
        sms_result = await self.send_sms(notice.customer_phone, message)

        email_result = None
        if notice.customer_email:
            email_result = await self.send_email(
                to_email=notice.customer_email,
                subject=f"A table is waiting for you - {notice.restaurant_name}",
                body_html=(
                    f"<h1>Your table is ready to book</h1><p>{message}</p>"
                    f'<p><a href="{notice.confirm_url}">Confirm my table</a></p>'
                ),
                body_text=message,
            )

        return NotificationResult(
            success=sms_result.success or bool(email_result and email_result.success),
            message_id=sms_result.message_id,
            provider=self.provider_name,
        )

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
