"""
Waitlist Manager

Keeps the per-restaurant queue of requests that could not get a table and
offers freed tables back to it.

Priority is a restaurant-wide sequence handed out once per entry, so the
queue is strictly first come first served. Promotion scans the waiting
entries of one slot in priority order and offers each freed table to the
first entry it fits; entries that fit nothing keep their place.

An offer holds the table for the entry until the guest confirms, declines,
withdraws, or the offer expires. Expiry runs from a Celery ETA task and a
periodic sweep; promotion, which also runs at the start of every allocation,
expires overdue offers of its own slot, so deadlines hold even without a
worker.
"""

import logging
from datetime import date, time, timedelta
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablewise.core.errors import (
    ConcurrentAllocationConflict,
    InvalidStatusTransition,
    StaleWaitlistEntry,
    WaitlistEntryNotFound,
)
from tablewise.models import (
    ACTIVE_BOOKING_STATUSES,
    AssignmentMethod,
    Booking,
    BookingStatus,
    Restaurant,
    RestaurantTable,
    TableStatus,
    WaitingListEntry,
    WaitlistStatus,
    as_utc,
    utcnow,
)
from tablewise.services.availability import candidate_tables
from tablewise.services.dispatch import BaseTaskDispatcher
from tablewise.services.locking import SlotKey, SlotLockRegistry, slot_key, slot_transaction
from tablewise.services.notifications.base import BaseNotificationService
from tablewise.services.outbox import Outbox
from tablewise.state import advance_entry

logger = logging.getLogger(__name__)


async def next_priority(session: AsyncSession, restaurant_id: int) -> int:
    """Advance the restaurant's waitlist sequence atomically and return the new value."""
    stmt = (
        update(Restaurant)
        .where(Restaurant.id == restaurant_id)
        .values(waitlist_sequence=Restaurant.waitlist_sequence + 1)
        .returning(Restaurant.waitlist_sequence)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).scalar_one()


class WaitlistManager:

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        locks: SlotLockRegistry,
        notifier: BaseNotificationService,
        dispatcher: BaseTaskDispatcher,
        offer_timeout_minutes: int = 15,
        base_url: str = "http://localhost:8001",
    ):
        self.session_maker = session_maker
        self.locks = locks
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.offer_timeout = timedelta(minutes=offer_timeout_minutes)
        self.base_url = base_url.rstrip("/")

    def confirm_url(self, entry_id: int) -> str:
        return f"{self.base_url}/api/waitlist/{entry_id}/confirm"

    # =========================================================================
    # QUEUE
    # =========================================================================

    async def add_entry(
        self,
        session: AsyncSession,
        restaurant_id: int,
        customer_id: int,
        on: date,
        at: time,
        party_size: int,
        notes: Optional[str] = None,
    ) -> WaitingListEntry:
        """Queue a request inside the caller's slot transaction."""
        priority = await next_priority(session, restaurant_id)
        entry = WaitingListEntry(
            restaurant_id=restaurant_id,
            customer_id=customer_id,
            requested_date=on,
            requested_time=at,
            party_size=party_size,
            status=WaitlistStatus.WAITING,
            priority_order=priority,
            notes=notes,
        )
        session.add(entry)
        await session.flush()

        logger.info(
            f"Waitlisted entry #{entry.id} (p{priority}) for restaurant #{restaurant_id} "
            f"{on.isoformat()} {at:%H:%M}, party of {party_size}"
        )
        return entry

    async def enqueue(
        self,
        restaurant_id: int,
        customer_id: int,
        on: date,
        at: time,
        party_size: int,
        notes: Optional[str] = None,
    ) -> WaitingListEntry:
        """
        Staff-added entry. Promotion runs straight after, so the entry is
        offered a table at once if one happens to be free.
        """
        key = slot_key(restaurant_id, on, at)
        async with slot_transaction(self.session_maker, self.locks, key) as session:
            entry = await self.add_entry(
                session, restaurant_id, customer_id, key[1], key[2], party_size, notes
            )
        await self.promote(restaurant_id, on, at)
        return entry

    async def list_entries(
        self,
        restaurant_id: int,
        on: Optional[date] = None,
        at: Optional[time] = None,
        statuses: Optional[Iterable[WaitlistStatus]] = None,
    ) -> list[WaitingListEntry]:
        stmt = select(WaitingListEntry).where(WaitingListEntry.restaurant_id == restaurant_id)
        if on is not None:
            stmt = stmt.where(WaitingListEntry.requested_date == on)
        if at is not None:
            stmt = stmt.where(WaitingListEntry.requested_time == at)
        if statuses is not None:
            stmt = stmt.where(WaitingListEntry.status.in_(list(statuses)))

        async with self.session_maker() as session:
            result = await session.scalars(stmt.order_by(WaitingListEntry.priority_order))
            return list(result.all())

    async def get_entry(self, entry_id: int) -> WaitingListEntry:
        async with self.session_maker() as session:
            entry = await session.get(WaitingListEntry, entry_id)
        if entry is None:
            raise WaitlistEntryNotFound(entry_id)
        return entry

    # =========================================================================
    # PROMOTION
    # =========================================================================

    async def expire_overdue(self, session: AsyncSession, key: SlotKey) -> int:
        """Expire the lapsed offers of one slot inside the caller's slot transaction."""
        restaurant_id, on, at = key
        result = await session.scalars(
            select(WaitingListEntry).where(
                WaitingListEntry.restaurant_id == restaurant_id,
                WaitingListEntry.requested_date == on,
                WaitingListEntry.requested_time == at,
                WaitingListEntry.status == WaitlistStatus.NOTIFIED,
                WaitingListEntry.offer_expires_at <= utcnow(),
            )
        )
        expired = 0
        for entry in result.all():
            advance_entry(entry, WaitlistStatus.EXPIRED)
            logger.info(f"Offer to entry #{entry.id} expired")
            expired += 1
        return expired

    async def _offer_free_tables(
        self, session: AsyncSession, key: SlotKey, outbox: Outbox
    ) -> list[WaitingListEntry]:
        restaurant_id, on, at = key
        result = await session.scalars(
            select(WaitingListEntry)
            .where(
                WaitingListEntry.restaurant_id == restaurant_id,
                WaitingListEntry.requested_date == on,
                WaitingListEntry.requested_time == at,
                WaitingListEntry.status == WaitlistStatus.WAITING,
            )
            .order_by(WaitingListEntry.priority_order)
        )

        offered = []
        # Tables only get scarcer during the scan, so one pass places every
        # entry that can be placed
        for entry in result.all():
            candidates = await candidate_tables(session, restaurant_id, on, at, entry.party_size)
            if not candidates:
                continue

            table = candidates[0]
            now = utcnow()
            advance_entry(entry, WaitlistStatus.NOTIFIED)
            entry.offered_table_id = table.id
            entry.notified_at = now
            entry.offer_expires_at = now + self.offer_timeout
            await session.flush()

            await outbox.add_offer(session, entry, self.confirm_url(entry.id))
            offered.append(entry)
            logger.info(
                f"Offered table {table.table_number} to entry #{entry.id} "
                f"(p{entry.priority_order}) until {entry.offer_expires_at:%H:%M:%S} UTC"
            )
        return offered

    async def promote_locked(
        self, session: AsyncSession, key: SlotKey, outbox: Outbox
    ) -> list[WaitingListEntry]:
        """Promotion inside a transaction that already holds the slot lock."""
        await self.expire_overdue(session, key)
        return await self._offer_free_tables(session, key, outbox)

    async def promote(self, restaurant_id: int, on: date, at: time) -> list[WaitingListEntry]:
        """Offer every free table of the slot to the waiting entries, best priority first."""
        key = slot_key(restaurant_id, on, at)
        outbox = Outbox()
        async with slot_transaction(self.session_maker, self.locks, key) as session:
            offered = await self.promote_locked(session, key, outbox)
        await outbox.deliver(self.notifier, self.dispatcher)
        return offered

    async def promote_restaurant(
        self, restaurant_id: int, today: Optional[date] = None
    ) -> list[WaitingListEntry]:
        """Run promotion for every upcoming slot that still has waiting entries."""
        today = today or date.today()
        async with self.session_maker() as session:
            result = await session.execute(
                select(WaitingListEntry.requested_date, WaitingListEntry.requested_time)
                .where(
                    WaitingListEntry.restaurant_id == restaurant_id,
                    WaitingListEntry.status == WaitlistStatus.WAITING,
                    WaitingListEntry.requested_date >= today,
                )
                .distinct()
                .order_by(WaitingListEntry.requested_date, WaitingListEntry.requested_time)
            )
            slots = result.all()

        offered = []
        for on, at in slots:
            offered.extend(await self.promote(restaurant_id, on, at))
        return offered

    # =========================================================================
    # OFFER RESOLUTION
    # =========================================================================

    async def _usable_held_table(
        self, session: AsyncSession, entry: WaitingListEntry
    ) -> Optional[RestaurantTable]:
        if entry.offered_table_id is None:
            return None
        table = await session.get(RestaurantTable, entry.offered_table_id)
        if table is None or table.status != TableStatus.AVAILABLE:
            return None
        if table.capacity < entry.party_size:
            return None
        clash = await session.scalar(
            select(Booking.id).where(
                Booking.table_id == table.id,
                Booking.booking_date == entry.requested_date,
                Booking.booking_time == entry.requested_time,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        )
        return None if clash else table

    async def confirm_offer(self, entry_id: int) -> Booking:
        """
        Guest accepts the offer: the entry becomes a confirmed booking on the
        held table, or on the next best fit if the held table went out of
        service. With no table left the offer expires and StaleWaitlistEntry
        is raised.
        """
        entry = await self.get_entry(entry_id)
        key = slot_key(entry.restaurant_id, entry.requested_date, entry.requested_time)
        outbox = Outbox()
        lapsed = False
        booking = None

        try:
            async with slot_transaction(self.session_maker, self.locks, key) as session:
                entry = await session.get(WaitingListEntry, entry_id)
                status = WaitlistStatus(entry.status)
                if status != WaitlistStatus.NOTIFIED:
                    if status == WaitlistStatus.WAITING:
                        raise InvalidStatusTransition(
                            "Waiting list entry", entry_id, status.value, WaitlistStatus.CONFIRMED.value
                        )
                    raise StaleWaitlistEntry(entry_id, status.value)

                table = None
                if as_utc(entry.offer_expires_at) > utcnow():
                    table = await self._usable_held_table(session, entry)
                    if table is None:
                        # Release the hold before looking for a replacement
                        held = entry.offered_table_id
                        entry.offered_table_id = None
                        await session.flush()
                        candidates = await candidate_tables(
                            session, *key, entry.party_size
                        )
                        if candidates:
                            table = candidates[0]
                            logger.info(
                                f"Held table #{held} unusable for entry #{entry_id}; "
                                f"moved to table {table.table_number}"
                            )

                if table is None:
                    advance_entry(entry, WaitlistStatus.EXPIRED)
                    lapsed = True
                else:
                    booking = Booking(
                        restaurant_id=entry.restaurant_id,
                        table_id=table.id,
                        customer_id=entry.customer_id,
                        booking_date=entry.requested_date,
                        booking_time=entry.requested_time,
                        party_size=entry.party_size,
                        status=BookingStatus.CONFIRMED,
                        assignment_method=AssignmentMethod.WAITLIST,
                        was_on_waitlist=True,
                        notes=entry.notes,
                    )
                    session.add(booking)
                    await session.flush()
                    advance_entry(entry, WaitlistStatus.CONFIRMED)
                    entry.booking_id = booking.id
                    await outbox.add_booking(session, booking)
        except IntegrityError as e:
            raise ConcurrentAllocationConflict(*key) from e

        if lapsed:
            logger.info(f"Entry #{entry_id} could not be confirmed; offer expired")
            await self.promote(*key)
            raise StaleWaitlistEntry(entry_id, WaitlistStatus.EXPIRED.value)

        await outbox.deliver(self.notifier, self.dispatcher)
        logger.info(f"Entry #{entry_id} confirmed as Booking #{booking.id} on table #{booking.table_id}")
        return booking

    async def expire_offer(self, entry_id: int, force: bool = False) -> WaitingListEntry:
        """
        Expire an offer and pass the table on.

        Timer callbacks that fire early leave the offer alone; force expires
        regardless (the guest declined). Entries no longer notified are
        ignored.
        """
        entry = await self.get_entry(entry_id)
        key = slot_key(entry.restaurant_id, entry.requested_date, entry.requested_time)

        async with slot_transaction(self.session_maker, self.locks, key) as session:
            entry = await session.get(WaitingListEntry, entry_id)
            if entry.status != WaitlistStatus.NOTIFIED:
                logger.info(f"Entry #{entry_id} is {entry.status.value}; nothing to expire")
                return entry
            if not force and as_utc(entry.offer_expires_at) > utcnow():
                logger.debug(f"Offer to entry #{entry_id} not due yet")
                return entry
            advance_entry(entry, WaitlistStatus.EXPIRED)

        logger.info(f"Offer to entry #{entry_id} {'declined' if force else 'expired'}")
        await self.promote(*key)
        return entry

    async def decline_offer(self, entry_id: int) -> WaitingListEntry:
        return await self.expire_offer(entry_id, force=True)

    async def expire_stale_offers(self) -> int:
        """Expire every offer whose deadline has passed. Returns how many expired."""
        async with self.session_maker() as session:
            result = await session.scalars(
                select(WaitingListEntry.id).where(
                    WaitingListEntry.status == WaitlistStatus.NOTIFIED,
                    WaitingListEntry.offer_expires_at <= utcnow(),
                )
            )
            due = list(result.all())

        expired = 0
        for entry_id in due:
            entry = await self.expire_offer(entry_id)
            if entry.status == WaitlistStatus.EXPIRED:
                expired += 1
        if expired:
            logger.info(f"Swept {expired} stale waitlist offer(s)")
        return expired

    async def withdraw(self, entry_id: int) -> WaitingListEntry:
        """Guest leaves the queue. A withdrawn offer frees its table for the next entry."""
        entry = await self.get_entry(entry_id)
        key = slot_key(entry.restaurant_id, entry.requested_date, entry.requested_time)

        async with slot_transaction(self.session_maker, self.locks, key) as session:
            entry = await session.get(WaitingListEntry, entry_id)
            was_notified = entry.status == WaitlistStatus.NOTIFIED
            try:
                advance_entry(entry, WaitlistStatus.CANCELLED)
            except StaleWaitlistEntry as e:
                logger.info(f"Withdraw ignored: {e.message}")
                return entry

        logger.info(f"Entry #{entry_id} withdrawn")
        if was_notified:
            await self.promote(*key)
        return entry
