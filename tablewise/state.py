"""
Booking and waiting list state machines.

Every status write in the engine goes through advance_booking() or
advance_entry(), so the allowed moves live in exactly one place.

    Booking:   pending -> confirmed -> seated -> completed
               pending/confirmed -> cancelled | no_show
               pending -> seated (walk-ins seated on arrival)

    Entry:     waiting -> notified -> confirmed | expired
               waiting/notified -> cancelled
"""

from datetime import datetime, timezone

from tablewise.core.errors import InvalidStatusTransition, StaleWaitlistEntry
from tablewise.models import (
    Booking,
    BookingStatus,
    WaitingListEntry,
    WaitlistStatus,
)

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.SEATED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.SEATED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }),
    BookingStatus.SEATED: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

WAITLIST_TRANSITIONS: dict[WaitlistStatus, frozenset[WaitlistStatus]] = {
    WaitlistStatus.WAITING: frozenset({WaitlistStatus.NOTIFIED, WaitlistStatus.CANCELLED}),
    WaitlistStatus.NOTIFIED: frozenset({
        WaitlistStatus.CONFIRMED,
        WaitlistStatus.EXPIRED,
        WaitlistStatus.CANCELLED,
    }),
    WaitlistStatus.CONFIRMED: frozenset(),
    WaitlistStatus.EXPIRED: frozenset(),
    WaitlistStatus.CANCELLED: frozenset(),
}

TERMINAL_BOOKING_STATUSES = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)
TERMINAL_WAITLIST_STATUSES = frozenset(
    status for status, targets in WAITLIST_TRANSITIONS.items() if not targets
)


def can_advance_booking(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS[current]


def advance_booking(booking: Booking, target: BookingStatus) -> bool:
    """
    Move a booking to target.

    Returns False when the booking is already in target (idempotent no-op),
    True when the status changed. Raises InvalidStatusTransition otherwise.
    """
    current = BookingStatus(booking.status)
    if current == target:
        return False
    if not can_advance_booking(current, target):
        raise InvalidStatusTransition("Booking", booking.id, current.value, target.value)

    now = datetime.now(timezone.utc)
    booking.status = target
    if target == BookingStatus.COMPLETED:
        booking.completed_at = now
    elif target == BookingStatus.CANCELLED:
        booking.cancelled_at = now
    return True


def advance_entry(entry: WaitingListEntry, target: WaitlistStatus) -> None:
    """
    Move a waiting list entry to target.

    Terminal entries raise StaleWaitlistEntry (callers log and ignore it);
    any other illegal move raises InvalidStatusTransition.
    """
    current = WaitlistStatus(entry.status)
    if current in TERMINAL_WAITLIST_STATUSES:
        raise StaleWaitlistEntry(entry.id, current.value)
    if target not in WAITLIST_TRANSITIONS[current]:
        raise InvalidStatusTransition("Waiting list entry", entry.id, current.value, target.value)

    entry.status = target
    if target != WaitlistStatus.NOTIFIED:
        # Leaving the notified state releases any held table
        entry.offered_table_id = None
        entry.offer_expires_at = None
