import pytest

from tablewise.core.errors import InvalidStatusTransition, StaleWaitlistEntry
from tablewise.models import Booking, BookingStatus, WaitingListEntry, WaitlistStatus
from tablewise.state import (
    TERMINAL_BOOKING_STATUSES,
    TERMINAL_WAITLIST_STATUSES,
    advance_booking,
    advance_entry,
    can_advance_booking,
)


def test_terminal_statuses():
    assert TERMINAL_BOOKING_STATUSES == {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }
    assert TERMINAL_WAITLIST_STATUSES == {
        WaitlistStatus.CONFIRMED,
        WaitlistStatus.EXPIRED,
        WaitlistStatus.CANCELLED,
    }


def test_booking_happy_path():
    booking = Booking(id=1, status=BookingStatus.PENDING)
    assert advance_booking(booking, BookingStatus.CONFIRMED)
    assert advance_booking(booking, BookingStatus.SEATED)
    assert advance_booking(booking, BookingStatus.COMPLETED)
    assert booking.completed_at is not None


def test_repeating_a_status_is_a_no_op():
    booking = Booking(id=1, status=BookingStatus.CONFIRMED)
    assert advance_booking(booking, BookingStatus.CANCELLED)
    stamp = booking.cancelled_at
    assert not advance_booking(booking, BookingStatus.CANCELLED)
    assert booking.cancelled_at == stamp


@pytest.mark.parametrize(
    "current, target",
    [
        (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
        (BookingStatus.SEATED, BookingStatus.CANCELLED),
        (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
        (BookingStatus.NO_SHOW, BookingStatus.CONFIRMED),
    ],
)
def test_illegal_booking_moves(current, target):
    booking = Booking(id=7, status=current)
    assert not can_advance_booking(current, target)
    with pytest.raises(InvalidStatusTransition):
        advance_booking(booking, target)
    assert booking.status == current


def test_leaving_notified_releases_the_hold():
    entry = WaitingListEntry(id=3, status=WaitlistStatus.NOTIFIED, offered_table_id=9)
    advance_entry(entry, WaitlistStatus.EXPIRED)
    assert entry.status == WaitlistStatus.EXPIRED
    assert entry.offered_table_id is None
    assert entry.offer_expires_at is None


def test_waiting_entry_cannot_confirm_directly():
    entry = WaitingListEntry(id=3, status=WaitlistStatus.WAITING)
    with pytest.raises(InvalidStatusTransition):
        advance_entry(entry, WaitlistStatus.CONFIRMED)


def test_terminal_entries_are_stale():
    entry = WaitingListEntry(id=3, status=WaitlistStatus.CANCELLED)
    with pytest.raises(StaleWaitlistEntry) as exc_info:
        advance_entry(entry, WaitlistStatus.CANCELLED)
    assert exc_info.value.status == "cancelled"
