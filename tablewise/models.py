"""
SQLAlchemy Database Models

Restaurant aggregate for the table allocation and waitlist engine:
- Restaurants with slot granularity and a waitlist priority sequence
- Tables with physical status
- Weekly hours, closed dates and per-date custom hours
- Customers, bookings and waiting list entries
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from tablewise.database import Base
import enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class TableStatus(str, enum.Enum):
    """Physical state of a table. Bookings never change it."""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class BookingStatus(str, enum.Enum):
    """Booking lifecycle; see tablewise.state for allowed moves."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AssignmentMethod(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"
    WAITLIST = "waitlist"


class WaitlistStatus(str, enum.Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses that commit a table and count toward booked capacity
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.SEATED,
)

_ACTIVE_SQL = "status IN ('pending', 'confirmed', 'seated') AND table_id IS NOT NULL"


class Restaurant(Base):
    """A tenant. Owns tables, hours, bookings and the waiting list."""
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    address = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    time_slot_duration_minutes = Column(Integer, nullable=False, default=15)

    # Last priority_order handed out; advanced with UPDATE ... RETURNING
    waitlist_sequence = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("time_slot_duration_minutes > 0", name="ck_restaurants_slot_positive"),
    )

    def __repr__(self):
        return f"<Restaurant #{self.id} - {self.name}>"


class RestaurantTable(Base):
    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    table_number = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False)
    status = Column(
        Enum(TableStatus, values_callable=_enum_values, name="table_status"),
        default=TableStatus.AVAILABLE,
        nullable=False,
        index=True
    )
    location_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "table_number", name="uq_tables_restaurant_number"),
        CheckConstraint("capacity > 0", name="ck_tables_capacity_positive"),
    )

    def __repr__(self):
        return f"<Table {self.table_number} ({self.capacity}) - {self.status.value}>"


class OperatingHours(Base):
    """Weekly pattern. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "restaurant_operating_hours"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(Integer, nullable=False)
    opening_time = Column(Time, nullable=False)
    closing_time = Column(Time, nullable=False)
    is_closed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "day_of_week", name="uq_hours_restaurant_day"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_hours_day_range"),
    )


class ClosedDate(Base):
    __tablename__ = "restaurant_closed_dates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    closed_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "closed_date", name="uq_closed_restaurant_date"),
    )


class CustomHours(Base):
    """Overrides the weekly pattern for one date."""
    __tablename__ = "restaurant_custom_hours"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = Column(Date, nullable=False)
    opening_time = Column(Time, nullable=False)
    closing_time = Column(Time, nullable=False)
    is_closed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "date", name="uq_custom_restaurant_date"),
    )


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False, index=True)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<Customer #{self.id} - {self.name}>"


class Booking(Base):
    """
    A table commitment for one slot.

    table_id is null while a booking awaits assignment. The partial unique
    index is the store-level guard against double-booking a table slot.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    table_id = Column(
        Integer, ForeignKey("restaurant_tables.id", ondelete="SET NULL"), nullable=True, index=True
    )
    customer_id = Column(
        Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    booking_date = Column(Date, nullable=False)
    booking_time = Column(Time, nullable=False)
    party_size = Column(Integer, nullable=False)

    status = Column(
        Enum(BookingStatus, values_callable=_enum_values, name="booking_status"),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )
    assignment_method = Column(
        Enum(AssignmentMethod, values_callable=_enum_values, name="assignment_method"),
        default=AssignmentMethod.AUTO,
        nullable=False
    )
    was_on_waitlist = Column(Boolean, nullable=False, default=False)
    is_walk_in = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_bookings_party_positive"),
        Index("ix_bookings_slot", "restaurant_id", "booking_date", "booking_time"),
        Index(
            "uq_bookings_active_table_slot",
            "table_id",
            "booking_date",
            "booking_time",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self):
        return (
            f"<Booking #{self.id} - table {self.table_id} - "
            f"{self.booking_date} {self.booking_time} - {self.status.value}>"
        )


class WaitingListEntry(Base):
    """
    A queued request. priority_order is set once from the restaurant
    sequence and never changes.
    """
    __tablename__ = "waiting_list"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id = Column(
        Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    requested_date = Column(Date, nullable=False)
    requested_time = Column(Time, nullable=False)
    party_size = Column(Integer, nullable=False)

    status = Column(
        Enum(WaitlistStatus, values_callable=_enum_values, name="waiting_list_status"),
        default=WaitlistStatus.WAITING,
        nullable=False,
        index=True
    )
    priority_order = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    # Offer bookkeeping while notified
    offered_table_id = Column(
        Integer, ForeignKey("restaurant_tables.id", ondelete="SET NULL"), nullable=True
    )
    notified_at = Column(DateTime(timezone=True), nullable=True)
    offer_expires_at = Column(DateTime(timezone=True), nullable=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_waiting_party_positive"),
        UniqueConstraint("restaurant_id", "priority_order", name="uq_waiting_priority"),
        Index("ix_waiting_slot", "restaurant_id", "requested_date", "requested_time"),
    )

    def __repr__(self):
        return (
            f"<WaitingListEntry #{self.id} - p{self.priority_order} - "
            f"party {self.party_size} - {self.status.value}>"
        )
