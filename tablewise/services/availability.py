"""
Availability Calculator

Point queries on one exact (restaurant, date, time) slot.

Capacity semantics:
    total_capacity      sum of capacity over tables whose status is
                        'available' (sellable capacity; allocation only ever
                        assigns such tables)
    booked_capacity     sum of party_size over pending/confirmed/seated
                        bookings at the slot
    held_capacity       sum of capacity over available tables held by an
                        unexpired waitlist offer at the slot
    available_capacity  max(0, total - booked - held)
    waiting_count       number of 'waiting' entries at the slot

An offer hold stops counting once its deadline passes, the same moment the
candidate query stops excluding the held table.
"""

from dataclasses import dataclass
from datetime import date, time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tablewise.models import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    Restaurant,
    RestaurantTable,
    TableStatus,
    WaitingListEntry,
    WaitlistStatus,
    utcnow,
)
from tablewise.services.hours import resolve_hours, slot_times


@dataclass(frozen=True)
class AvailabilitySnapshot:
    booking_date: date
    booking_time: time
    total_capacity: int
    booked_capacity: int
    available_capacity: int
    waiting_count: int
    held_capacity: int = 0

    @property
    def has_space(self) -> bool:
        return self.available_capacity > 0


def live_hold_filter(restaurant_id: int, on: date, at: time) -> tuple:
    """Where-clauses selecting offers that still hold a table at the slot."""
    return (
        WaitingListEntry.restaurant_id == restaurant_id,
        WaitingListEntry.requested_date == on,
        WaitingListEntry.requested_time == at,
        WaitingListEntry.offered_table_id.is_not(None),
        WaitingListEntry.status == WaitlistStatus.NOTIFIED,
        WaitingListEntry.offer_expires_at > utcnow(),
    )


async def total_capacity(session: AsyncSession, restaurant_id: int) -> int:
    result = await session.scalar(
        select(func.coalesce(func.sum(RestaurantTable.capacity), 0)).where(
            RestaurantTable.restaurant_id == restaurant_id,
            RestaurantTable.status == TableStatus.AVAILABLE,
        )
    )
    return int(result or 0)


async def booked_capacity(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> int:
    result = await session.scalar(
        select(func.coalesce(func.sum(Booking.party_size), 0)).where(
            Booking.restaurant_id == restaurant_id,
            Booking.booking_date == on,
            Booking.booking_time == at,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return int(result or 0)


async def held_capacity(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> int:
    """Seats on available tables reserved for a waitlist offer that has not lapsed."""
    result = await session.scalar(
        select(func.coalesce(func.sum(RestaurantTable.capacity), 0))
        .join(WaitingListEntry, WaitingListEntry.offered_table_id == RestaurantTable.id)
        .where(
            RestaurantTable.status == TableStatus.AVAILABLE,
            *live_hold_filter(restaurant_id, on, at),
        )
    )
    return int(result or 0)


async def waiting_count(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> int:
    result = await session.scalar(
        select(func.count(WaitingListEntry.id)).where(
            WaitingListEntry.restaurant_id == restaurant_id,
            WaitingListEntry.requested_date == on,
            WaitingListEntry.requested_time == at,
            WaitingListEntry.status == WaitlistStatus.WAITING,
        )
    )
    return int(result or 0)


async def availability(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> AvailabilitySnapshot:
    total = await total_capacity(session, restaurant_id)
    booked = await booked_capacity(session, restaurant_id, on, at)
    held = await held_capacity(session, restaurant_id, on, at)
    waiting = await waiting_count(session, restaurant_id, on, at)
    return AvailabilitySnapshot(
        booking_date=on,
        booking_time=at,
        total_capacity=total,
        booked_capacity=booked,
        available_capacity=max(0, total - booked - held),
        waiting_count=waiting,
        held_capacity=held,
    )


async def day_availability(
    session: AsyncSession, restaurant: Restaurant, on: date
) -> list[AvailabilitySnapshot]:
    """One snapshot per slot of the day; empty when the restaurant is closed."""
    hours = await resolve_hours(session, restaurant.id, on)
    return [
        await availability(session, restaurant.id, on, at)
        for at in slot_times(hours, restaurant.time_slot_duration_minutes)
    ]


# =============================================================================
# CANDIDATE TABLES
# =============================================================================

async def committed_table_ids(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> set[int]:
    """Tables taken at the slot by an active booking or held by a pending offer."""
    booked = await session.scalars(
        select(Booking.table_id).where(
            Booking.restaurant_id == restaurant_id,
            Booking.booking_date == on,
            Booking.booking_time == at,
            Booking.table_id.is_not(None),
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    held = await session.scalars(
        select(WaitingListEntry.offered_table_id).where(
            *live_hold_filter(restaurant_id, on, at)
        )
    )
    return set(booked.all()) | set(held.all())


def best_fit_order(table: RestaurantTable) -> tuple:
    """Smallest sufficient table first, then table number, then id."""
    return (table.capacity, table.table_number, table.id)


async def candidate_tables(
    session: AsyncSession,
    restaurant_id: int,
    on: date,
    at: time,
    party_size: int,
) -> list[RestaurantTable]:
    """Available tables that hold the party and are free at the slot, best fit first."""
    taken = await committed_table_ids(session, restaurant_id, on, at)
    result = await session.scalars(
        select(RestaurantTable).where(
            RestaurantTable.restaurant_id == restaurant_id,
            RestaurantTable.status == TableStatus.AVAILABLE,
            RestaurantTable.capacity >= party_size,
        )
    )
    tables = [table for table in result.all() if table.id not in taken]
    return sorted(tables, key=best_fit_order)
