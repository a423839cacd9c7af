"""
Calendar / Hours Resolver

Decides whether a restaurant is open on a date and at a time.

Resolution order:
    1. A closed date closes the whole day.
    2. Custom hours for the date replace the weekly pattern.
    3. Otherwise the weekly operating hours for the weekday apply.

Weekdays follow the 0 = Sunday ... 6 = Saturday convention used by the
stored operating hours. A restaurant with nothing configured for the day is
treated as closed and reported as a configuration problem, never raised.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablewise.models import ClosedDate, CustomHours, OperatingHours

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayHours:
    """Resolved opening window for one restaurant and date."""
    is_open: bool
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    reason: str = ""
    source: str = "weekly"  # closed_date, custom, weekly, none
    misconfigured: bool = False

    def contains(self, at: time) -> bool:
        """True when at falls within [opening_time, closing_time)."""
        if not self.is_open:
            return False
        return self.opening_time <= at < self.closing_time


def day_of_week(on: date) -> int:
    """Weekday index with 0 = Sunday."""
    return (on.weekday() + 1) % 7


def resolve_window(
    on: date,
    closed: Optional[ClosedDate],
    custom: Optional[CustomHours],
    weekly: Optional[OperatingHours],
) -> DayHours:
    """
    Apply the precedence rules to already-loaded rows.

    Pure function so the rules can be exercised without a database.
    """
    if closed is not None:
        reason = f"closed on {on.isoformat()}"
        if closed.reason:
            reason = f"{reason} ({closed.reason})"
        return DayHours(is_open=False, reason=reason, source="closed_date")

    if custom is not None:
        row, source = custom, "custom"
    elif weekly is not None:
        row, source = weekly, "weekly"
    else:
        return DayHours(
            is_open=False,
            reason=f"no operating hours configured for {on:%A}",
            source="none",
            misconfigured=True,
        )

    if row.is_closed:
        label = "special hours" if source == "custom" else f"every {on:%A}"
        return DayHours(is_open=False, reason=f"closed ({label})", source=source)

    if row.closing_time <= row.opening_time:
        return DayHours(
            is_open=False,
            opening_time=row.opening_time,
            closing_time=row.closing_time,
            reason=(
                f"invalid hours {row.opening_time:%H:%M}-{row.closing_time:%H:%M} "
                f"configured for {on.isoformat()}"
            ),
            source=source,
            misconfigured=True,
        )

    return DayHours(
        is_open=True,
        opening_time=row.opening_time,
        closing_time=row.closing_time,
        source=source,
    )


async def resolve_hours(session: AsyncSession, restaurant_id: int, on: date) -> DayHours:
    """Load the rows for a date and resolve the opening window."""
    closed = await session.scalar(
        select(ClosedDate).where(
            ClosedDate.restaurant_id == restaurant_id,
            ClosedDate.closed_date == on,
        )
    )
    custom = None
    weekly = None
    if closed is None:
        custom = await session.scalar(
            select(CustomHours).where(
                CustomHours.restaurant_id == restaurant_id,
                CustomHours.date == on,
            )
        )
        if custom is None:
            weekly = await session.scalar(
                select(OperatingHours).where(
                    OperatingHours.restaurant_id == restaurant_id,
                    OperatingHours.day_of_week == day_of_week(on),
                )
            )

    hours = resolve_window(on, closed, custom, weekly)
    if hours.misconfigured:
        logger.warning(f"Restaurant #{restaurant_id}: {hours.reason}; treating as closed")
    return hours


async def is_open(
    session: AsyncSession, restaurant_id: int, on: date, at: time
) -> tuple[bool, str]:
    """Whether the restaurant takes bookings at (on, at), with a reason when not."""
    hours = await resolve_hours(session, restaurant_id, on)
    if not hours.is_open:
        return False, hours.reason
    if not hours.contains(at):
        return False, (
            f"{at:%H:%M} is outside opening hours "
            f"{hours.opening_time:%H:%M}-{hours.closing_time:%H:%M}"
        )
    return True, ""


# =============================================================================
# SLOT GRID
# =============================================================================

def _minutes(at: time) -> int:
    return at.hour * 60 + at.minute


def slot_times(hours: DayHours, granularity: int) -> list[time]:
    """All slot start times of the day, from opening while before closing."""
    if not hours.is_open:
        return []
    anchor = datetime.combine(date.min, hours.opening_time)
    end = datetime.combine(date.min, hours.closing_time)
    step = timedelta(minutes=granularity)

    slots = []
    current = anchor
    while current < end:
        slots.append(current.time())
        current += step
    return slots


def is_aligned(hours: DayHours, at: time, granularity: int) -> bool:
    """True when at lies on the slot grid anchored at the opening time."""
    if at.second or at.microsecond:
        return False
    anchor = hours.opening_time if hours.opening_time is not None else time(0, 0)
    return (_minutes(at) - _minutes(anchor)) % granularity == 0
