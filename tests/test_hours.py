from datetime import date, time

from tablewise.models import ClosedDate, CustomHours, OperatingHours
from tablewise.services.hours import (
    DayHours,
    day_of_week,
    is_aligned,
    is_open,
    resolve_window,
    slot_times,
)

from conftest import BOOKING_DAY

FRIDAY = BOOKING_DAY
SUNDAY = date(2030, 6, 9)


def weekly(opening=time(18, 0), closing=time(22, 0), is_closed=False):
    return OperatingHours(
        day_of_week=5, opening_time=opening, closing_time=closing, is_closed=is_closed
    )


def test_day_of_week_starts_on_sunday():
    assert day_of_week(SUNDAY) == 0
    assert day_of_week(FRIDAY) == 5
    assert day_of_week(date(2030, 6, 8)) == 6


def test_weekly_hours_apply_without_overrides():
    hours = resolve_window(FRIDAY, None, None, weekly())
    assert hours.is_open
    assert hours.source == "weekly"
    assert (hours.opening_time, hours.closing_time) == (time(18, 0), time(22, 0))


def test_closed_date_beats_custom_hours():
    closed = ClosedDate(closed_date=FRIDAY, reason="Private event")
    custom = CustomHours(date=FRIDAY, opening_time=time(12, 0), closing_time=time(23, 0))
    hours = resolve_window(FRIDAY, closed, custom, weekly())
    assert not hours.is_open
    assert hours.source == "closed_date"
    assert "Private event" in hours.reason


def test_custom_hours_replace_weekly_pattern():
    custom = CustomHours(
        date=FRIDAY, opening_time=time(12, 0), closing_time=time(15, 0), is_closed=False
    )
    hours = resolve_window(FRIDAY, None, custom, weekly())
    assert hours.source == "custom"
    assert hours.contains(time(12, 30))
    assert not hours.contains(time(19, 0))


def test_weekly_closed_day():
    hours = resolve_window(FRIDAY, None, None, weekly(is_closed=True))
    assert not hours.is_open
    assert not hours.misconfigured


def test_missing_hours_are_closed_and_flagged():
    hours = resolve_window(FRIDAY, None, None, None)
    assert not hours.is_open
    assert hours.misconfigured


def test_overnight_window_is_treated_as_misconfigured():
    hours = resolve_window(FRIDAY, None, None, weekly(opening=time(22, 0), closing=time(2, 0)))
    assert not hours.is_open
    assert hours.misconfigured


def test_window_is_half_open():
    hours = DayHours(is_open=True, opening_time=time(18, 0), closing_time=time(22, 0))
    assert hours.contains(time(18, 0))
    assert hours.contains(time(21, 45))
    assert not hours.contains(time(22, 0))
    assert not hours.contains(time(17, 59))


def test_slot_times_step_from_opening():
    hours = DayHours(is_open=True, opening_time=time(18, 0), closing_time=time(19, 0))
    assert slot_times(hours, 15) == [time(18, 0), time(18, 15), time(18, 30), time(18, 45)]
    assert slot_times(hours, 25) == [time(18, 0), time(18, 25), time(18, 50)]
    assert slot_times(DayHours(is_open=False), 15) == []


def test_alignment_is_anchored_at_opening():
    hours = DayHours(is_open=True, opening_time=time(18, 10), closing_time=time(22, 0))
    assert is_aligned(hours, time(18, 25), 15)
    assert not is_aligned(hours, time(18, 30), 15)
    assert not is_aligned(hours, time(18, 25, 30), 15)


async def test_is_open_reads_the_calendar(booking_engine, restaurant, session_maker):
    await booking_engine.inventory.add_closed_date(restaurant.id, SUNDAY, "Family day")

    async with session_maker() as session:
        assert await is_open(session, restaurant.id, FRIDAY, time(19, 0)) == (True, "")

        open_, reason = await is_open(session, restaurant.id, FRIDAY, time(23, 0))
        assert not open_
        assert "outside opening hours" in reason

        open_, reason = await is_open(session, restaurant.id, SUNDAY, time(19, 0))
        assert not open_
        assert "Family day" in reason
