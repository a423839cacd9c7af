from datetime import date, time, timedelta

import pytest

from tablewise.core.errors import InvalidStatusTransition, StaleWaitlistEntry, WaitlistEntryNotFound
from tablewise.models import (
    AssignmentMethod,
    BookingStatus,
    TableStatus,
    WaitingListEntry,
    WaitlistStatus,
    as_utc,
    utcnow,
)

from conftest import BOOKING_DAY, DINNER


async def backdate_offer(session_maker, entry_id):
    async with session_maker() as session:
        async with session.begin():
            entry = await session.get(WaitingListEntry, entry_id)
            entry.offer_expires_at = utcnow() - timedelta(minutes=1)


async def entry_status(booking_engine, entry_id) -> WaitlistStatus:
    return (await booking_engine.waitlist.get_entry(entry_id)).status


async def test_one_table_scenario(booking_engine, notifier, dispatcher, add_tables, make_request, new_customer):
    (table,) = await add_tables(4)
    bob = await new_customer("Bob")

    first = await booking_engine.allocate(make_request(party_size=4))
    second = await booking_engine.allocate(make_request(party_size=4, customer_id=bob.id))
    assert second.waitlisted

    await booking_engine.cancel(first.booking.id)

    entry = await booking_engine.waitlist.get_entry(second.waitlist_entry.id)
    assert entry.status == WaitlistStatus.NOTIFIED
    assert entry.offered_table_id == table.id
    assert entry.notified_at is not None
    assert as_utc(entry.offer_expires_at) > utcnow()

    (offer,) = notifier.offers
    assert offer.entry_id == entry.id
    assert offer.customer_name == "Bob"
    assert offer.confirm_url == f"http://testserver/api/waitlist/{entry.id}/confirm"
    assert dispatcher.scheduled[0][0] == entry.id

    booking = await booking_engine.confirm_waitlist_offer(entry.id)
    assert booking.table_id == table.id
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.assignment_method == AssignmentMethod.WAITLIST
    assert booking.was_on_waitlist
    assert booking.customer_id == bob.id

    confirmed = await booking_engine.waitlist.get_entry(entry.id)
    assert confirmed.status == WaitlistStatus.CONFIRMED
    assert confirmed.booking_id == booking.id
    assert confirmed.offered_table_id is None
    assert notifier.confirmations[-1].was_on_waitlist


async def test_priority_is_first_come_first_served(booking_engine, add_tables, make_request):
    await add_tables(2)
    taken = await booking_engine.allocate(make_request(party_size=2))
    early = await booking_engine.allocate(make_request(party_size=2))
    late = await booking_engine.allocate(make_request(party_size=2))
    assert early.waitlist_entry.priority_order < late.waitlist_entry.priority_order

    await booking_engine.cancel(taken.booking.id)

    assert await entry_status(booking_engine, early.waitlist_entry.id) == WaitlistStatus.NOTIFIED
    assert await entry_status(booking_engine, late.waitlist_entry.id) == WaitlistStatus.WAITING


async def test_priority_sequence_spans_slots(booking_engine, add_tables, make_request):
    await add_tables(2)
    await booking_engine.allocate(make_request(party_size=2, at=time(19, 0)))
    await booking_engine.allocate(make_request(party_size=2, at=time(20, 0)))
    a = await booking_engine.allocate(make_request(party_size=2, at=time(19, 0)))
    b = await booking_engine.allocate(make_request(party_size=2, at=time(20, 0)))
    c = await booking_engine.allocate(make_request(party_size=2, at=time(19, 0)))
    orders = [r.waitlist_entry.priority_order for r in (a, b, c)]
    assert orders == sorted(orders)
    assert len(set(orders)) == 3


async def test_entries_that_do_not_fit_keep_their_place(booking_engine, add_tables, make_request):
    await add_tables(2, 6)
    small = await booking_engine.allocate(make_request(party_size=2))
    await booking_engine.allocate(make_request(party_size=6))
    big = await booking_engine.allocate(make_request(party_size=6))
    couple = await booking_engine.allocate(make_request(party_size=2))

    await booking_engine.cancel(small.booking.id)

    assert await entry_status(booking_engine, big.waitlist_entry.id) == WaitlistStatus.WAITING
    assert await entry_status(booking_engine, couple.waitlist_entry.id) == WaitlistStatus.NOTIFIED


async def test_several_freed_tables_promote_several_entries(booking_engine, restaurant, add_tables, make_request):
    await add_tables(2)
    await booking_engine.allocate(make_request(party_size=2))
    waiting = [await booking_engine.allocate(make_request(party_size=2)) for _ in range(3)]

    offered = await booking_engine.inventory.add_table(restaurant.id, "T2", 2)
    await booking_engine.inventory.add_table(restaurant.id, "T3", 2)

    statuses = [await entry_status(booking_engine, r.waitlist_entry.id) for r in waiting]
    assert statuses == [WaitlistStatus.NOTIFIED, WaitlistStatus.NOTIFIED, WaitlistStatus.WAITING]
    first = await booking_engine.waitlist.get_entry(waiting[0].waitlist_entry.id)
    assert first.offered_table_id == offered.id


async def test_held_table_is_not_offered_to_new_requests(booking_engine, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    newcomer = await booking_engine.allocate(make_request(party_size=2))
    assert newcomer.waitlisted
    assert await entry_status(booking_engine, queued.waitlist_entry.id) == WaitlistStatus.NOTIFIED


async def test_cancel_twice_promotes_once(booking_engine, notifier, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))

    await booking_engine.cancel(first.booking.id)
    again = await booking_engine.cancel(first.booking.id)

    assert again.status == BookingStatus.CANCELLED
    assert len(notifier.offers) == 1
    assert await entry_status(booking_engine, a.waitlist_entry.id) == WaitlistStatus.NOTIFIED
    assert await entry_status(booking_engine, b.waitlist_entry.id) == WaitlistStatus.WAITING


async def test_expired_offer_moves_to_next_entry(booking_engine, session_maker, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    # Timer firing early changes nothing
    early = await booking_engine.waitlist.expire_offer(a.waitlist_entry.id)
    assert early.status == WaitlistStatus.NOTIFIED

    await backdate_offer(session_maker, a.waitlist_entry.id)
    expired = await booking_engine.waitlist.expire_offer(a.waitlist_entry.id)
    assert expired.status == WaitlistStatus.EXPIRED
    assert await entry_status(booking_engine, b.waitlist_entry.id) == WaitlistStatus.NOTIFIED

    # Late timer for an entry that already moved on
    again = await booking_engine.waitlist.expire_offer(a.waitlist_entry.id)
    assert again.status == WaitlistStatus.EXPIRED


async def test_sweep_expires_overdue_offers(booking_engine, session_maker, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    assert await booking_engine.waitlist.expire_stale_offers() == 0
    await backdate_offer(session_maker, a.waitlist_entry.id)
    assert await booking_engine.waitlist.expire_stale_offers() == 1
    assert await entry_status(booking_engine, a.waitlist_entry.id) == WaitlistStatus.EXPIRED


async def test_confirming_a_lapsed_offer_fails(booking_engine, session_maker, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)
    await backdate_offer(session_maker, a.waitlist_entry.id)

    with pytest.raises(StaleWaitlistEntry):
        await booking_engine.confirm_waitlist_offer(a.waitlist_entry.id)
    assert await entry_status(booking_engine, a.waitlist_entry.id) == WaitlistStatus.EXPIRED
    assert await entry_status(booking_engine, b.waitlist_entry.id) == WaitlistStatus.NOTIFIED


async def test_decline_passes_the_table_on(booking_engine, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    declined = await booking_engine.decline_waitlist_offer(a.waitlist_entry.id)
    assert declined.status == WaitlistStatus.EXPIRED
    assert await entry_status(booking_engine, b.waitlist_entry.id) == WaitlistStatus.NOTIFIED


async def test_withdraw(booking_engine, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))
    c = await booking_engine.allocate(make_request(party_size=4))

    # Withdrawing a waiting entry promotes nobody
    withdrawn = await booking_engine.withdraw_from_waitlist(c.waitlist_entry.id)
    assert withdrawn.status == WaitlistStatus.CANCELLED

    await booking_engine.cancel(first.booking.id)
    await booking_engine.withdraw_from_waitlist(a.waitlist_entry.id)
    assert await entry_status(booking_engine, a.waitlist_entry.id) == WaitlistStatus.CANCELLED
    assert await entry_status(booking_engine, b.waitlist_entry.id) == WaitlistStatus.NOTIFIED

    again = await booking_engine.withdraw_from_waitlist(a.waitlist_entry.id)
    assert again.status == WaitlistStatus.CANCELLED


async def test_confirm_requires_an_offer(booking_engine, add_tables, make_request):
    await add_tables(2)
    await booking_engine.allocate(make_request(party_size=2))
    queued = await booking_engine.allocate(make_request(party_size=2))

    with pytest.raises(InvalidStatusTransition):
        await booking_engine.confirm_waitlist_offer(queued.waitlist_entry.id)
    with pytest.raises(WaitlistEntryNotFound):
        await booking_engine.confirm_waitlist_offer(999)


async def test_confirm_moves_to_next_best_table_when_held_one_breaks(
    booking_engine, restaurant, add_tables, make_request
):
    (held,) = await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)

    spare = await booking_engine.inventory.add_table(restaurant.id, "T2", 6, status=TableStatus.MAINTENANCE)
    await booking_engine.inventory.set_table_status(held.id, TableStatus.MAINTENANCE)
    await booking_engine.inventory.set_table_status(spare.id, TableStatus.AVAILABLE)

    booking = await booking_engine.confirm_waitlist_offer(queued.waitlist_entry.id)
    assert booking.table_id == spare.id
    assert booking.assignment_method == AssignmentMethod.WAITLIST


async def test_confirm_without_any_table_expires_the_offer(booking_engine, add_tables, make_request):
    (held,) = await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)
    await booking_engine.inventory.set_table_status(held.id, TableStatus.MAINTENANCE)

    with pytest.raises(StaleWaitlistEntry):
        await booking_engine.confirm_waitlist_offer(queued.waitlist_entry.id)
    assert await entry_status(booking_engine, queued.waitlist_entry.id) == WaitlistStatus.EXPIRED


async def test_table_back_in_service_clears_walk_ins_and_promotes(
    booking_engine, dispatcher, restaurant, add_tables, make_request
):
    (table,) = await add_tables(4)
    walk_in = await booking_engine.allocate(make_request(party_size=3, is_walk_in=True))
    queued = await booking_engine.allocate(make_request(party_size=2))
    await booking_engine.inventory.set_table_status(table.id, TableStatus.OCCUPIED)

    await booking_engine.inventory.set_table_status(table.id, TableStatus.AVAILABLE)

    cleared = await booking_engine.get_booking(walk_in.booking.id)
    assert cleared.status == BookingStatus.COMPLETED
    assert dispatcher.exported[-1]["status"] == "completed"
    assert await entry_status(booking_engine, queued.waitlist_entry.id) == WaitlistStatus.NOTIFIED


async def test_staff_enqueue_is_offered_a_free_table(booking_engine, restaurant, customer, add_tables):
    await add_tables(4)
    entry = await booking_engine.waitlist.enqueue(restaurant.id, customer.id, BOOKING_DAY, DINNER, 2)
    assert await entry_status(booking_engine, entry.id) == WaitlistStatus.NOTIFIED


async def test_past_slots_are_not_promoted(booking_engine, restaurant, customer, add_tables):
    past = date(2020, 1, 3)
    entry = await booking_engine.waitlist.enqueue(restaurant.id, customer.id, past, DINNER, 2)
    await add_tables(4)
    assert await entry_status(booking_engine, entry.id) == WaitlistStatus.WAITING


async def test_list_entries_in_priority_order(booking_engine, restaurant, add_tables, make_request):
    await add_tables(2)
    await booking_engine.allocate(make_request(party_size=2))
    for _ in range(3):
        await booking_engine.allocate(make_request(party_size=2))

    entries = await booking_engine.waitlist.list_entries(restaurant.id, BOOKING_DAY, DINNER)
    assert [e.priority_order for e in entries] == sorted(e.priority_order for e in entries)
    waiting = await booking_engine.waitlist.list_entries(
        restaurant.id, statuses=[WaitlistStatus.NOTIFIED]
    )
    assert waiting == []


async def test_first_waiting_couple_gets_priority_one(booking_engine, add_tables, make_request, new_customer):
    (table,) = await add_tables(4)
    bob = await new_customer("Bob")

    first = await booking_engine.allocate(make_request(party_size=4))
    second = await booking_engine.allocate(make_request(party_size=2, customer_id=bob.id))
    assert second.waitlisted
    assert second.waitlist_entry.priority_order == 1
    assert second.waitlist_entry.status == WaitlistStatus.WAITING

    await booking_engine.cancel(first.booking.id)

    entry = await booking_engine.waitlist.get_entry(second.waitlist_entry.id)
    assert entry.status == WaitlistStatus.NOTIFIED
    assert entry.offered_table_id == table.id
    booking = await booking_engine.confirm_waitlist_offer(entry.id)
    assert booking.party_size == 2
    assert booking.table_id == table.id


async def test_party_larger_than_every_table_keeps_waiting(booking_engine, restaurant, add_tables, make_request):
    await add_tables(4, 8)
    booked = await booking_engine.allocate(make_request(party_size=8))
    big = await booking_engine.allocate(make_request(party_size=10))
    assert big.waitlisted

    await booking_engine.cancel(booked.booking.id)
    assert await entry_status(booking_engine, big.waitlist_entry.id) == WaitlistStatus.WAITING

    await booking_engine.inventory.add_table(restaurant.id, "T9", 8)
    entry = await booking_engine.waitlist.get_entry(big.waitlist_entry.id)
    assert entry.status == WaitlistStatus.WAITING
    assert entry.offered_table_id is None


async def test_lapsed_offer_does_not_block_a_newcomer(booking_engine, session_maker, add_tables, make_request):
    (table,) = await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)
    await backdate_offer(session_maker, queued.waitlist_entry.id)

    newcomer = await booking_engine.allocate(make_request(party_size=4))

    assert not newcomer.waitlisted
    assert newcomer.booking.table_id == table.id
    assert await entry_status(booking_engine, queued.waitlist_entry.id) == WaitlistStatus.EXPIRED


async def test_lapsed_offer_goes_to_the_queue_before_a_newcomer(
    booking_engine, session_maker, notifier, add_tables, make_request
):
    (table,) = await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    a = await booking_engine.allocate(make_request(party_size=4))
    b = await booking_engine.allocate(make_request(party_size=4))
    await booking_engine.cancel(first.booking.id)
    await backdate_offer(session_maker, a.waitlist_entry.id)

    newcomer = await booking_engine.allocate(make_request(party_size=4))

    assert newcomer.waitlisted
    assert newcomer.waitlist_entry.priority_order > b.waitlist_entry.priority_order
    assert await entry_status(booking_engine, a.waitlist_entry.id) == WaitlistStatus.EXPIRED
    promoted = await booking_engine.waitlist.get_entry(b.waitlist_entry.id)
    assert promoted.status == WaitlistStatus.NOTIFIED
    assert promoted.offered_table_id == table.id
    assert notifier.offers[-1].entry_id == b.waitlist_entry.id


async def test_cancel_offers_the_table_before_returning(booking_engine, notifier, dispatcher, add_tables, make_request):
    await add_tables(4)
    first = await booking_engine.allocate(make_request(party_size=4))
    queued = await booking_engine.allocate(make_request(party_size=4))

    cancelled = await booking_engine.cancel(first.booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert [o.entry_id for o in notifier.offers] == [queued.waitlist_entry.id]
    assert [entry_id for entry_id, _ in dispatcher.scheduled] == [queued.waitlist_entry.id]
    assert dispatcher.exported[-1]["status"] == "cancelled"
