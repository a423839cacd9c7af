"""
Centralized error handling for the booking engine.

Every engine failure is a subclass of BookingError. None of them is fatal to
the process: each is per-request and recoverable by the caller (retry, show
an error, or offer another time). Running out of tables is not an error at
all, it is the waitlist path.

The API maps errors to HTTP responses through ERROR_RULES so routes stay thin
and new error types are easy to add.
"""
from __future__ import annotations

from datetime import date, time
from typing import Optional

from fastapi import HTTPException


class BookingError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Request validation (rejected at the boundary)
# ---------------------------------------------------------------------------

class InvalidPartySize(BookingError):
    def __init__(self, party_size: int):
        super().__init__(f"Party size must be at least 1 (got {party_size})")
        self.party_size = party_size


class InvalidTimeSlot(BookingError):
    def __init__(self, requested: time, granularity: int, opening: Optional[time] = None):
        anchor = f" starting at {opening:%H:%M}" if opening else ""
        super().__init__(
            f"{requested:%H:%M:%S} is not on the {granularity}-minute slot grid{anchor}"
        )
        self.requested = requested
        self.granularity = granularity


class RestaurantClosed(BookingError):
    """Slot outside operating hours or on a closed date."""

    def __init__(self, booking_date: date, booking_time: time, reason: str):
        super().__init__(
            f"Restaurant closed on {booking_date.isoformat()} at {booking_time:%H:%M}: {reason}"
        )
        self.booking_date = booking_date
        self.booking_time = booking_time
        self.reason = reason


# ---------------------------------------------------------------------------
# Staff setup
# ---------------------------------------------------------------------------

class InvalidSetup(BookingError):
    """Restaurant, hours or table data that can never be valid."""


class TableNumberTaken(BookingError):
    def __init__(self, restaurant_id: int, table_number: str):
        super().__init__(f"Restaurant #{restaurant_id} already has a table {table_number}")
        self.restaurant_id = restaurant_id
        self.table_number = table_number


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFound(BookingError):
    kind = "Resource"

    def __init__(self, ident: int):
        super().__init__(f"{self.kind} #{ident} not found")
        self.ident = ident


class RestaurantNotFound(NotFound):
    kind = "Restaurant"


class TableNotFound(NotFound):
    kind = "Table"


class BookingNotFound(NotFound):
    kind = "Booking"


class CustomerNotFound(NotFound):
    kind = "Customer"


class WaitlistEntryNotFound(NotFound):
    kind = "Waiting list entry"


# ---------------------------------------------------------------------------
# Allocation and lifecycle
# ---------------------------------------------------------------------------

class TableUnavailable(BookingError):
    """A staff-chosen table cannot take the booking."""

    def __init__(self, table_id: int, reason: str):
        super().__init__(f"Table #{table_id} unavailable: {reason}")
        self.table_id = table_id
        self.reason = reason


class ConcurrentAllocationConflict(BookingError):
    """Another allocation won the same table slot twice in a row. Transient."""

    def __init__(self, restaurant_id: int, booking_date: date, booking_time: time):
        super().__init__(
            f"Could not allocate restaurant #{restaurant_id} "
            f"{booking_date.isoformat()} {booking_time:%H:%M} due to concurrent requests; retry"
        )


class InvalidStatusTransition(BookingError):
    def __init__(self, entity: str, ident: int, current: str, target: str):
        super().__init__(f"{entity} #{ident} cannot move from {current} to {target}")
        self.current = current
        self.target = target


class StaleWaitlistEntry(BookingError):
    """Entry already confirmed, expired or cancelled."""

    def __init__(self, entry_id: int, status: str):
        super().__init__(f"Waiting list entry #{entry_id} is already {status}")
        self.entry_id = entry_id
        self.status = status


# ---------------------------------------------------------------------------
# HTTP mapping: (error type, status code). First match wins.
# ---------------------------------------------------------------------------

STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_UNPROCESSABLE = 422
STATUS_SERVICE_UNAVAILABLE = 503
STATUS_INTERNAL_ERROR = 500

ERROR_RULES: list[tuple[type[BookingError], int]] = [
    (NotFound, STATUS_NOT_FOUND),
    (InvalidPartySize, STATUS_UNPROCESSABLE),
    (InvalidTimeSlot, STATUS_UNPROCESSABLE),
    (InvalidSetup, STATUS_UNPROCESSABLE),
    (TableNumberTaken, STATUS_CONFLICT),
    (RestaurantClosed, STATUS_CONFLICT),
    (TableUnavailable, STATUS_CONFLICT),
    (InvalidStatusTransition, STATUS_CONFLICT),
    (StaleWaitlistEntry, STATUS_CONFLICT),
    (ConcurrentAllocationConflict, STATUS_SERVICE_UNAVAILABLE),
]


def error_to_http(exc: BookingError) -> HTTPException:
    """Map an engine error into an HTTPException using ERROR_RULES."""
    for error_type, status_code in ERROR_RULES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=exc.message)
