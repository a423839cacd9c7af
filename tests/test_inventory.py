from datetime import time

import pytest

from tablewise.core.errors import InvalidSetup, RestaurantNotFound, TableNumberTaken
from tablewise.models import TableStatus


async def test_default_slot_duration(booking_engine):
    restaurant = await booking_engine.inventory.create_restaurant("Plain")
    assert restaurant.time_slot_duration_minutes == 15
    assert restaurant.waitlist_sequence == 0


@pytest.mark.parametrize("minutes", [0, -15])
async def test_slot_duration_must_be_positive(booking_engine, minutes):
    with pytest.raises(InvalidSetup):
        await booking_engine.inventory.create_restaurant("Broken", time_slot_duration_minutes=minutes)


async def test_get_restaurant(booking_engine, restaurant):
    found = await booking_engine.inventory.get_restaurant(restaurant.id)
    assert found.name == "Test Bistro"
    with pytest.raises(RestaurantNotFound):
        await booking_engine.inventory.get_restaurant(999)


@pytest.mark.parametrize("capacity", [0, -2])
async def test_table_capacity_must_be_positive(booking_engine, restaurant, capacity):
    with pytest.raises(InvalidSetup):
        await booking_engine.inventory.add_table(restaurant.id, "T1", capacity)
    assert await booking_engine.inventory.list_tables(restaurant.id) == []


async def test_table_numbers_are_unique_per_restaurant(booking_engine, restaurant, add_tables):
    await add_tables(4)
    with pytest.raises(TableNumberTaken) as exc_info:
        await booking_engine.inventory.add_table(restaurant.id, "T1", 6)
    assert exc_info.value.table_number == "T1"
    (table,) = await booking_engine.inventory.list_tables(restaurant.id)
    assert table.capacity == 4

    other = await booking_engine.inventory.create_restaurant("Elsewhere")
    same_number = await booking_engine.inventory.add_table(other.id, "T1", 2)
    assert same_number.status == TableStatus.AVAILABLE


@pytest.mark.parametrize("day", [-1, 7])
async def test_weekday_must_exist(booking_engine, restaurant, day):
    with pytest.raises(InvalidSetup):
        await booking_engine.inventory.set_weekly_hours(restaurant.id, day, time(18, 0), time(22, 0))
