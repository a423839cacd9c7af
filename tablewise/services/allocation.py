"""
Allocation Engine

Turns a booking request into either a confirmed table or a waitlist entry,
and owns every later change to a booking's status or table.

Flow of allocate():
    1. Validate at the boundary: party size, restaurant, opening hours and
       the slot grid. Invalid requests never touch the slot lock.
    2. Under the slot lock, expire lapsed offers and let the waitlist claim
       any table they release, then query the candidate tables for the party.
    3. Book the best fit (smallest sufficient table), or queue the request
       on the waitlist when nothing fits.
    4. After commit, export the booking to the ledger and notify the guest.

Any change that takes a booking out of the active set runs a promotion for
its slot inside the same transaction, so freed tables go straight back
to the queue.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablewise.core.config import Settings, get_settings
from tablewise.core.errors import (
    BookingNotFound,
    ConcurrentAllocationConflict,
    CustomerNotFound,
    InvalidPartySize,
    InvalidStatusTransition,
    InvalidTimeSlot,
    RestaurantClosed,
    RestaurantNotFound,
    TableNotFound,
    TableUnavailable,
)
from tablewise.models import (
    AssignmentMethod,
    Booking,
    BookingStatus,
    Customer,
    Restaurant,
    RestaurantTable,
    TableStatus,
    WaitingListEntry,
)
from tablewise.services import availability as calc
from tablewise.services.dispatch import BaseTaskDispatcher
from tablewise.services.hours import is_aligned, resolve_hours
from tablewise.services.inventory import TableInventory
from tablewise.services.locking import SlotKey, SlotLockRegistry, slot_key, slot_transaction
from tablewise.services.notifications.base import BaseNotificationService
from tablewise.services.outbox import Outbox
from tablewise.services.waitlist import WaitlistManager
from tablewise.state import advance_booking

logger = logging.getLogger(__name__)


@dataclass
class AllocationRequest:
    restaurant_id: int
    customer_id: int
    booking_date: date
    booking_time: time
    party_size: int
    notes: Optional[str] = None
    is_walk_in: bool = False
    # Staff-chosen table; bypasses best fit and never falls back to the waitlist
    table_id: Optional[int] = None
    # None follows AUTO_CONFIRM_BOOKINGS
    confirm: Optional[bool] = None


@dataclass
class AllocationResult:
    method: AssignmentMethod
    booking: Optional[Booking] = None
    waitlist_entry: Optional[WaitingListEntry] = None

    @property
    def waitlisted(self) -> bool:
        return self.waitlist_entry is not None


class BookingEngine:
    """Library surface of the allocation and waitlist engine."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        notifier: BaseNotificationService,
        dispatcher: BaseTaskDispatcher,
        settings: Optional[Settings] = None,
        locks: Optional[SlotLockRegistry] = None,
    ):
        settings = settings or get_settings()
        self.session_maker = session_maker
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.locks = locks or SlotLockRegistry()
        self.auto_confirm = settings.auto_confirm_bookings
        self.waitlist = WaitlistManager(
            session_maker,
            self.locks,
            notifier,
            dispatcher,
            offer_timeout_minutes=settings.waitlist_offer_timeout_minutes,
            base_url=settings.app_base_url,
        )
        self.inventory = TableInventory(
            session_maker, self.waitlist, default_slot_minutes=settings.default_slot_minutes
        )

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate(self, request: AllocationRequest) -> Restaurant:
        """Reject requests that can never be booked. Returns the restaurant."""
        if request.party_size < 1:
            raise InvalidPartySize(request.party_size)

        async with self.session_maker() as session:
            restaurant = await session.get(Restaurant, request.restaurant_id)
            if restaurant is None:
                raise RestaurantNotFound(request.restaurant_id)
            if await session.get(Customer, request.customer_id) is None:
                raise CustomerNotFound(request.customer_id)

            hours = await resolve_hours(session, restaurant.id, request.booking_date)

        at = request.booking_time
        if not hours.is_open:
            raise RestaurantClosed(request.booking_date, at, hours.reason)
        if not hours.contains(at):
            raise RestaurantClosed(
                request.booking_date,
                at,
                f"{at:%H:%M} is outside opening hours "
                f"{hours.opening_time:%H:%M}-{hours.closing_time:%H:%M}",
            )
        granularity = restaurant.time_slot_duration_minutes
        if not is_aligned(hours, at, granularity):
            raise InvalidTimeSlot(at, granularity, hours.opening_time)
        return restaurant

    # =========================================================================
    # ALLOCATION
    # =========================================================================

    async def allocate(self, request: AllocationRequest) -> AllocationResult:
        await self.validate(request)
        key = slot_key(request.restaurant_id, request.booking_date, request.booking_time)

        for attempt in (1, 2):
            try:
                result, outbox = await self._allocate_once(request, key)
                break
            except IntegrityError as e:
                if attempt == 2:
                    logger.error(f"Allocation for slot {key} conflicted twice; giving up")
                    raise ConcurrentAllocationConflict(*key) from e
                logger.warning(f"Allocation for slot {key} hit a store conflict; retrying once")

        await outbox.deliver(self.notifier, self.dispatcher)
        return result

    async def _allocate_once(
        self, request: AllocationRequest, key: SlotKey
    ) -> tuple[AllocationResult, Outbox]:
        restaurant_id, on, at = key
        outbox = Outbox()

        async with slot_transaction(self.session_maker, self.locks, key) as session:
            # Lapsed offers release their tables to the queue before a newcomer sees them
            await self.waitlist.promote_locked(session, key, outbox)

            if request.table_id is not None:
                table = await self._check_chosen_table(
                    session, restaurant_id, on, at, request.party_size, request.table_id
                )
                method = AssignmentMethod.MANUAL
            else:
                candidates = await calc.candidate_tables(
                    session, restaurant_id, on, at, request.party_size
                )
                if not candidates:
                    entry = await self.waitlist.add_entry(
                        session,
                        restaurant_id,
                        request.customer_id,
                        on,
                        at,
                        request.party_size,
                        request.notes,
                    )
                    return AllocationResult(AssignmentMethod.WAITLIST, waitlist_entry=entry), outbox
                table = candidates[0]
                method = AssignmentMethod.AUTO

            booking = Booking(
                restaurant_id=restaurant_id,
                table_id=table.id,
                customer_id=request.customer_id,
                booking_date=on,
                booking_time=at,
                party_size=request.party_size,
                status=self._initial_status(request),
                assignment_method=method,
                is_walk_in=request.is_walk_in,
                notes=request.notes,
            )
            session.add(booking)
            await session.flush()
            await outbox.add_booking(session, booking)

        logger.info(
            f"Booking #{booking.id}: table {table.table_number} (seats {table.capacity}) "
            f"for party of {booking.party_size} at {on.isoformat()} {at:%H:%M} "
            f"[{method.value}, {booking.status.value}]"
        )
        return AllocationResult(method, booking=booking), outbox

    def _initial_status(self, request: AllocationRequest) -> BookingStatus:
        if request.is_walk_in:
            return BookingStatus.SEATED
        confirm = self.auto_confirm if request.confirm is None else request.confirm
        return BookingStatus.CONFIRMED if confirm else BookingStatus.PENDING

    async def _check_chosen_table(
        self,
        session: AsyncSession,
        restaurant_id: int,
        on: date,
        at: time,
        party_size: int,
        table_id: int,
    ) -> RestaurantTable:
        table = await session.get(RestaurantTable, table_id)
        if table is None:
            raise TableNotFound(table_id)
        if table.restaurant_id != restaurant_id:
            raise TableUnavailable(table_id, "belongs to another restaurant")
        if table.status == TableStatus.MAINTENANCE:
            raise TableUnavailable(table_id, "under maintenance")
        if table.capacity < party_size:
            raise TableUnavailable(
                table_id, f"seats {table.capacity}, party of {party_size}"
            )
        taken = await calc.committed_table_ids(session, restaurant_id, on, at)
        if table.id in taken:
            raise TableUnavailable(table_id, f"already taken at {on.isoformat()} {at:%H:%M}")
        return table

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def get_booking(self, booking_id: int) -> Booking:
        async with self.session_maker() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def list_bookings(
        self, restaurant_id: int, on: Optional[date] = None
    ) -> list[Booking]:
        stmt = select(Booking).where(Booking.restaurant_id == restaurant_id)
        if on is not None:
            stmt = stmt.where(Booking.booking_date == on)
        async with self.session_maker() as session:
            result = await session.scalars(
                stmt.order_by(Booking.booking_date, Booking.booking_time, Booking.id)
            )
            return list(result.all())

    async def update_status(self, booking_id: int, status: BookingStatus) -> Booking:
        """
        Move a booking through its state machine.

        Repeating the current status is a no-op. A booking that leaves the
        active set frees its table, and the slot is promoted in the same
        transaction so no newcomer can take the table first.
        """
        booking = await self.get_booking(booking_id)
        key = slot_key(booking.restaurant_id, booking.booking_date, booking.booking_time)
        outbox = Outbox()

        async with slot_transaction(self.session_maker, self.locks, key) as session:
            booking = await session.get(Booking, booking_id)
            was_active = booking.is_active
            changed = advance_booking(booking, status)
            if changed:
                await session.flush()
                await outbox.add_booking(
                    session, booking, notify=status == BookingStatus.CONFIRMED
                )
                if was_active and not booking.is_active and booking.table_id is not None:
                    await self.waitlist.promote_locked(session, key, outbox)

        if not changed:
            logger.debug(f"Booking #{booking_id} already {status.value}")
            return booking

        logger.info(f"Booking #{booking_id} -> {status.value}")
        await outbox.deliver(self.notifier, self.dispatcher)
        return booking

    async def cancel(self, booking_id: int) -> Booking:
        return await self.update_status(booking_id, BookingStatus.CANCELLED)

    async def complete(self, booking_id: int) -> Booking:
        return await self.update_status(booking_id, BookingStatus.COMPLETED)

    async def mark_no_show(self, booking_id: int) -> Booking:
        return await self.update_status(booking_id, BookingStatus.NO_SHOW)

    async def seat(self, booking_id: int) -> Booking:
        return await self.update_status(booking_id, BookingStatus.SEATED)

    async def reassign_table(self, booking_id: int, table_id: int) -> Booking:
        """Staff moves an active booking to another table in the same slot."""
        booking = await self.get_booking(booking_id)
        key = slot_key(booking.restaurant_id, booking.booking_date, booking.booking_time)
        outbox = Outbox()

        async with slot_transaction(self.session_maker, self.locks, key) as session:
            booking = await session.get(Booking, booking_id)
            if not booking.is_active:
                raise InvalidStatusTransition(
                    "Booking", booking_id, booking.status.value, "reassigned"
                )
            previous = booking.table_id
            if previous == table_id:
                return booking
            await self._check_chosen_table(
                session, *key, booking.party_size, table_id
            )
            booking.table_id = table_id
            booking.assignment_method = AssignmentMethod.MANUAL
            await session.flush()
            await outbox.add_booking(session, booking, notify=False)
            if previous is not None:
                await self.waitlist.promote_locked(session, key, outbox)

        logger.info(f"Booking #{booking_id} moved from table #{previous} to table #{table_id}")
        await outbox.deliver(self.notifier, self.dispatcher)
        return booking

    # =========================================================================
    # AVAILABILITY
    # =========================================================================

    async def availability(
        self, restaurant_id: int, on: date, at: time
    ) -> calc.AvailabilitySnapshot:
        async with self.session_maker() as session:
            if await session.get(Restaurant, restaurant_id) is None:
                raise RestaurantNotFound(restaurant_id)
            return await calc.availability(session, restaurant_id, on, at)

    async def day_availability(
        self, restaurant_id: int, on: date
    ) -> list[calc.AvailabilitySnapshot]:
        async with self.session_maker() as session:
            restaurant = await session.get(Restaurant, restaurant_id)
            if restaurant is None:
                raise RestaurantNotFound(restaurant_id)
            return await calc.day_availability(session, restaurant, on)

    # =========================================================================
    # WAITLIST
    # =========================================================================

    async def confirm_waitlist_offer(self, entry_id: int) -> Booking:
        return await self.waitlist.confirm_offer(entry_id)

    async def decline_waitlist_offer(self, entry_id: int) -> WaitingListEntry:
        return await self.waitlist.decline_offer(entry_id)

    async def withdraw_from_waitlist(self, entry_id: int) -> WaitingListEntry:
        return await self.waitlist.withdraw(entry_id)
