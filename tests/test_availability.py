from datetime import time, timedelta

import pytest

from tablewise.core.errors import RestaurantNotFound
from tablewise.models import TableStatus, WaitingListEntry, utcnow
from tablewise.services.availability import best_fit_order, candidate_tables

from conftest import BOOKING_DAY, DINNER


async def test_empty_slot(booking_engine, restaurant, add_tables):
    await add_tables(2, 4, 6)
    snapshot = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert snapshot.total_capacity == 12
    assert snapshot.booked_capacity == 0
    assert snapshot.available_capacity == 12
    assert snapshot.waiting_count == 0
    assert snapshot.has_space


async def test_booked_and_waiting_are_counted(booking_engine, restaurant, add_tables, make_request):
    await add_tables(4)
    await booking_engine.allocate(make_request(party_size=3))
    await booking_engine.allocate(make_request(party_size=2))
    await booking_engine.allocate(make_request(party_size=5))

    snapshot = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert snapshot.total_capacity == 4
    assert snapshot.booked_capacity == 3
    assert snapshot.available_capacity == 1
    assert snapshot.waiting_count == 2


async def test_available_capacity_never_negative(booking_engine, restaurant, add_tables, make_request):
    (table,) = await add_tables(4)
    await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.inventory.set_table_status(table.id, TableStatus.MAINTENANCE)

    snapshot = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert snapshot.total_capacity == 0
    assert snapshot.booked_capacity == 4
    assert snapshot.available_capacity == 0


async def test_only_available_tables_count(booking_engine, restaurant, add_tables):
    await add_tables(2, 4)
    await booking_engine.inventory.add_table(restaurant.id, "P1", 10, status=TableStatus.MAINTENANCE)
    snapshot = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert snapshot.total_capacity == 6


async def test_slots_do_not_share_capacity(booking_engine, restaurant, add_tables, make_request):
    await add_tables(4)
    await booking_engine.allocate(make_request(party_size=4, at=time(19, 0)))
    later = await booking_engine.availability(restaurant.id, BOOKING_DAY, time(19, 15))
    assert later.available_capacity == 4


async def test_day_view_covers_every_slot(booking_engine, restaurant, add_tables):
    await add_tables(2)
    slots = await booking_engine.day_availability(restaurant.id, BOOKING_DAY)
    assert len(slots) == 16
    assert slots[0].booking_time == time(18, 0)
    assert slots[-1].booking_time == time(21, 45)


async def test_day_view_is_empty_when_closed(booking_engine, restaurant):
    await booking_engine.inventory.add_closed_date(restaurant.id, BOOKING_DAY)
    assert await booking_engine.day_availability(restaurant.id, BOOKING_DAY) == []


async def test_unknown_restaurant(booking_engine):
    with pytest.raises(RestaurantNotFound):
        await booking_engine.availability(999, BOOKING_DAY, DINNER)


async def test_candidates_are_best_fit_first(session_maker, restaurant, add_tables):
    await add_tables(6, 2, 4, 4)
    async with session_maker() as session:
        tables = await candidate_tables(session, restaurant.id, BOOKING_DAY, DINNER, 3)
    assert [t.capacity for t in tables] == [4, 4, 6]
    assert [t.table_number for t in tables] == ["T3", "T4", "T1"]
    assert tables == sorted(tables, key=best_fit_order)


async def test_offered_table_is_not_reported_as_free(
    booking_engine, session_maker, restaurant, add_tables, make_request
):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    snapshot = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert snapshot.booked_capacity == 0
    assert snapshot.held_capacity == 4
    assert snapshot.available_capacity == 0
    assert not snapshot.has_space
    newcomer = await booking_engine.allocate(make_request(party_size=2))
    assert newcomer.waitlisted

    async with session_maker() as session:
        async with session.begin():
            entry = await session.get(WaitingListEntry, queued.waitlist_entry.id)
            entry.offer_expires_at = utcnow() - timedelta(minutes=1)

    lapsed = await booking_engine.availability(restaurant.id, BOOKING_DAY, DINNER)
    assert lapsed.held_capacity == 0
    assert lapsed.available_capacity == 4
