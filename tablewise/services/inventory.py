"""
Table Inventory

Staff-side setup of the restaurant aggregate: restaurants, tables, weekly
hours, closed dates, custom hours and customers.

Table status is physical state only. Bookings never change it, but staff
changes do feed the waitlist: a new table, or a table coming back into
service, triggers promotion for every upcoming slot with waiting entries.
"""

import logging
from datetime import date, time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablewise.core.errors import (
    InvalidSetup,
    RestaurantNotFound,
    TableNotFound,
    TableNumberTaken,
)
from tablewise.models import (
    Booking,
    BookingStatus,
    ClosedDate,
    CustomHours,
    Customer,
    OperatingHours,
    Restaurant,
    RestaurantTable,
    TableStatus,
)
from tablewise.services.outbox import Outbox
from tablewise.services.waitlist import WaitlistManager
from tablewise.state import advance_booking

logger = logging.getLogger(__name__)


class TableInventory:

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        waitlist: WaitlistManager,
        default_slot_minutes: int = 15,
    ):
        self.session_maker = session_maker
        self.waitlist = waitlist
        self.default_slot_minutes = default_slot_minutes

    async def _restaurant(self, session: AsyncSession, restaurant_id: int) -> Restaurant:
        restaurant = await session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(restaurant_id)
        return restaurant

    # =========================================================================
    # RESTAURANT & CALENDAR
    # =========================================================================

    async def create_restaurant(
        self,
        name: str,
        time_slot_duration_minutes: Optional[int] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Restaurant:
        slot_minutes = time_slot_duration_minutes
        if slot_minutes is None:
            slot_minutes = self.default_slot_minutes
        if slot_minutes <= 0:
            raise InvalidSetup(f"Slot duration must be positive (got {slot_minutes})")

        async with self.session_maker() as session:
            async with session.begin():
                restaurant = Restaurant(
                    name=name,
                    address=address,
                    phone=phone,
                    email=email,
                    time_slot_duration_minutes=slot_minutes,
                    waitlist_sequence=0,
                )
                session.add(restaurant)

        logger.info(f"Created {restaurant} with {slot_minutes}-minute slots")
        return restaurant

    async def get_restaurant(self, restaurant_id: int) -> Restaurant:
        async with self.session_maker() as session:
            return await self._restaurant(session, restaurant_id)

    async def set_weekly_hours(
        self,
        restaurant_id: int,
        day_of_week: int,
        opening_time: time,
        closing_time: time,
        is_closed: bool = False,
    ) -> OperatingHours:
        """Upsert the weekly hours for one weekday (0 = Sunday)."""
        if not 0 <= day_of_week <= 6:
            raise InvalidSetup(f"day_of_week must be 0 (Sunday) to 6 (Saturday), got {day_of_week}")

        async with self.session_maker() as session:
            async with session.begin():
                await self._restaurant(session, restaurant_id)
                row = await session.scalar(
                    select(OperatingHours).where(
                        OperatingHours.restaurant_id == restaurant_id,
                        OperatingHours.day_of_week == day_of_week,
                    )
                )
                if row is None:
                    row = OperatingHours(restaurant_id=restaurant_id, day_of_week=day_of_week)
                    session.add(row)
                row.opening_time = opening_time
                row.closing_time = closing_time
                row.is_closed = is_closed

        if not is_closed and closing_time <= opening_time:
            logger.warning(
                f"Restaurant #{restaurant_id} day {day_of_week}: closing {closing_time:%H:%M} "
                f"is not after opening {opening_time:%H:%M}; the day will be treated as closed"
            )
        return row

    async def add_closed_date(
        self, restaurant_id: int, on: date, reason: Optional[str] = None
    ) -> ClosedDate:
        async with self.session_maker() as session:
            async with session.begin():
                await self._restaurant(session, restaurant_id)
                row = await session.scalar(
                    select(ClosedDate).where(
                        ClosedDate.restaurant_id == restaurant_id,
                        ClosedDate.closed_date == on,
                    )
                )
                if row is None:
                    row = ClosedDate(restaurant_id=restaurant_id, closed_date=on)
                    session.add(row)
                row.reason = reason

        logger.info(f"Restaurant #{restaurant_id} closed on {on.isoformat()}")
        return row

    async def set_custom_hours(
        self,
        restaurant_id: int,
        on: date,
        opening_time: time,
        closing_time: time,
        is_closed: bool = False,
    ) -> CustomHours:
        async with self.session_maker() as session:
            async with session.begin():
                await self._restaurant(session, restaurant_id)
                row = await session.scalar(
                    select(CustomHours).where(
                        CustomHours.restaurant_id == restaurant_id,
                        CustomHours.date == on,
                    )
                )
                if row is None:
                    row = CustomHours(restaurant_id=restaurant_id, date=on)
                    session.add(row)
                row.opening_time = opening_time
                row.closing_time = closing_time
                row.is_closed = is_closed
        return row

    # =========================================================================
    # TABLES
    # =========================================================================

    async def add_table(
        self,
        restaurant_id: int,
        table_number: str,
        capacity: int,
        location_notes: Optional[str] = None,
        status: TableStatus = TableStatus.AVAILABLE,
    ) -> RestaurantTable:
        if capacity <= 0:
            raise InvalidSetup(f"Table capacity must be positive (got {capacity})")

        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await self._restaurant(session, restaurant_id)
                    table = RestaurantTable(
                        restaurant_id=restaurant_id,
                        table_number=table_number,
                        capacity=capacity,
                        location_notes=location_notes,
                        status=status,
                    )
                    session.add(table)
        except IntegrityError as e:
            raise TableNumberTaken(restaurant_id, table_number) from e

        logger.info(f"Restaurant #{restaurant_id}: added {table}")
        if status == TableStatus.AVAILABLE:
            await self.waitlist.promote_restaurant(restaurant_id)
        return table

    async def list_tables(self, restaurant_id: int) -> list[RestaurantTable]:
        async with self.session_maker() as session:
            await self._restaurant(session, restaurant_id)
            result = await session.scalars(
                select(RestaurantTable)
                .where(RestaurantTable.restaurant_id == restaurant_id)
                .order_by(RestaurantTable.table_number)
            )
            return list(result.all())

    async def set_table_status(self, table_id: int, status: TableStatus) -> RestaurantTable:
        """
        Change a table's physical state.

        Marking a table available clears it: seated walk-ins on it are
        completed, and the freed capacity is offered to the waitlist.
        """
        outbox = Outbox()
        async with self.session_maker() as session:
            async with session.begin():
                table = await session.get(RestaurantTable, table_id)
                if table is None:
                    raise TableNotFound(table_id)
                previous = TableStatus(table.status)
                table.status = status

                cleared = 0
                if status == TableStatus.AVAILABLE:
                    result = await session.scalars(
                        select(Booking).where(
                            Booking.table_id == table_id,
                            Booking.is_walk_in.is_(True),
                            Booking.status == BookingStatus.SEATED,
                        )
                    )
                    for booking in result.all():
                        advance_booking(booking, BookingStatus.COMPLETED)
                        await session.flush()
                        await outbox.add_booking(session, booking, notify=False)
                        cleared += 1

        await outbox.deliver(self.waitlist.notifier, self.waitlist.dispatcher)
        logger.info(
            f"Table {table.table_number} -> {status.value} (was {previous.value})"
            + (f", completed {cleared} walk-in(s)" if cleared else "")
        )
        if status == TableStatus.AVAILABLE and (previous != status or cleared):
            await self.waitlist.promote_restaurant(table.restaurant_id)
        return table

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    async def get_or_create_customer(
        self, name: str, phone: str, email: Optional[str] = None
    ) -> Customer:
        """Customers are matched on phone number; name and email are refreshed."""
        async with self.session_maker() as session:
            async with session.begin():
                customer = await session.scalar(
                    select(Customer).where(Customer.phone == phone).order_by(Customer.id).limit(1)
                )
                if customer is None:
                    customer = Customer(name=name, phone=phone, email=email)
                    session.add(customer)
                    logger.info(f"New customer {name} ({phone})")
                else:
                    customer.name = name
                    if email:
                        customer.email = email
        return customer
