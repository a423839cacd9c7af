"""
Post-commit side effects.

Allocation and promotion collect everything the outside world should hear
about while the slot transaction is open, then deliver it once the
transaction has committed. A rolled-back transaction never notifies anyone.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tablewise.models import (
    AssignmentMethod,
    Booking,
    BookingStatus,
    Customer,
    Restaurant,
    RestaurantTable,
    WaitingListEntry,
)
from tablewise.services.dispatch import BaseTaskDispatcher
from tablewise.services.notifications.base import (
    BaseNotificationService,
    BookingNotice,
    OfferNotice,
)

logger = logging.getLogger(__name__)


@dataclass
class Outbox:
    confirmations: list[BookingNotice] = field(default_factory=list)
    offers: list[OfferNotice] = field(default_factory=list)
    exports: list[dict[str, Any]] = field(default_factory=list)
    expiries: list[tuple[int, datetime]] = field(default_factory=list)

    async def add_booking(
        self, session: AsyncSession, booking: Booking, notify: bool = True
    ) -> None:
        """Queue the ledger row, and the guest notice when the booking is confirmed."""
        restaurant = await session.get(Restaurant, booking.restaurant_id)
        customer = await session.get(Customer, booking.customer_id)
        table = await session.get(RestaurantTable, booking.table_id) if booking.table_id else None

        self.exports.append(booking_payload(booking, table, customer))
        if notify and booking.status == BookingStatus.CONFIRMED:
            self.confirmations.append(
                BookingNotice(
                    booking_id=booking.id,
                    restaurant_name=restaurant.name,
                    customer_name=customer.name,
                    customer_phone=customer.phone,
                    customer_email=customer.email,
                    booking_date=booking.booking_date,
                    booking_time=booking.booking_time,
                    party_size=booking.party_size,
                    table_number=table.table_number if table else None,
                    was_on_waitlist=booking.was_on_waitlist,
                )
            )

    async def add_offer(
        self, session: AsyncSession, entry: WaitingListEntry, confirm_url: str
    ) -> None:
        restaurant = await session.get(Restaurant, entry.restaurant_id)
        customer = await session.get(Customer, entry.customer_id)
        self.offers.append(
            OfferNotice(
                entry_id=entry.id,
                restaurant_name=restaurant.name,
                customer_name=customer.name,
                customer_phone=customer.phone,
                customer_email=customer.email,
                requested_date=entry.requested_date,
                requested_time=entry.requested_time,
                party_size=entry.party_size,
                expires_at=entry.offer_expires_at,
                confirm_url=confirm_url,
            )
        )
        self.expiries.append((entry.id, entry.offer_expires_at))

    async def deliver(
        self, notifier: BaseNotificationService, dispatcher: BaseTaskDispatcher
    ) -> None:
        """Hand everything off. Failures are logged; the committed state stands."""
        # Ledger writes and broker calls block; keep them off the event loop
        for payload in self.exports:
            await asyncio.to_thread(dispatcher.export_booking, payload)
        for entry_id, expires_at in self.expiries:
            await asyncio.to_thread(dispatcher.schedule_offer_expiry, entry_id, expires_at)

        for notice in self.offers:
            try:
                result = await notifier.send_waitlist_offer(notice)
            except Exception:
                logger.exception(f"Offer notification crashed for entry #{notice.entry_id}")
                continue
            if not result.success:
                logger.warning(
                    f"Offer notification failed for entry #{notice.entry_id}: {result.error_message}"
                )

        for notice in self.confirmations:
            try:
                result = await notifier.send_booking_confirmation(notice)
            except Exception:
                logger.exception(f"Confirmation crashed for Booking #{notice.booking_id}")
                continue
            if not result.success:
                logger.warning(
                    f"Confirmation failed for Booking #{notice.booking_id}: {result.error_message}"
                )


def booking_payload(
    booking: Booking,
    table: Optional[RestaurantTable],
    customer: Optional[Customer],
) -> dict[str, Any]:
    """JSON-safe ledger row for a booking."""
    return {
        "booking_id": booking.id,
        "restaurant_id": booking.restaurant_id,
        "table_id": booking.table_id,
        "table_number": table.table_number if table else None,
        "customer_id": booking.customer_id,
        "customer_name": customer.name if customer else None,
        "booking_date": booking.booking_date.isoformat(),
        "booking_time": booking.booking_time.strftime("%H:%M"),
        "party_size": booking.party_size,
        "status": BookingStatus(booking.status).value,
        "assignment_method": AssignmentMethod(booking.assignment_method).value,
        "was_on_waitlist": booking.was_on_waitlist,
        "is_walk_in": booking.is_walk_in,
        "notes": booking.notes,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }
