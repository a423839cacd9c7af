"""
Pydantic Schemas for Request/Response Validation

Covers the staff setup endpoints (restaurants, hours, tables), booking
requests and their outcome, availability views and the waiting list.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import date, datetime, time
import re

from tablewise.models import (
    AssignmentMethod,
    BookingStatus,
    TableStatus,
    WaitlistStatus,
)


# =============================================================================
# RESTAURANT SETUP
# =============================================================================

class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, examples=["Chez Marie"])
    address: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    time_slot_duration_minutes: Optional[int] = Field(None, gt=0, le=240, examples=[15])


class RestaurantResponse(BaseModel):
    id: int
    name: str
    address: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    time_slot_duration_minutes: int
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class WeeklyHoursUpdate(BaseModel):
    """Hours for one weekday. day_of_week: 0 = Sunday ... 6 = Saturday."""
    day_of_week: int = Field(..., ge=0, le=6, examples=[5])
    opening_time: time = Field(..., examples=["18:00"])
    closing_time: time = Field(..., examples=["22:00"])
    is_closed: bool = False


class WeeklyHoursResponse(BaseModel):
    id: int
    restaurant_id: int
    day_of_week: int
    opening_time: time
    closing_time: time
    is_closed: bool

    class Config:
        from_attributes = True


class ClosedDateCreate(BaseModel):
    closed_date: date
    reason: Optional[str] = Field(None, max_length=500, examples=["Private event"])


class ClosedDateResponse(BaseModel):
    id: int
    restaurant_id: int
    closed_date: date
    reason: Optional[str]

    class Config:
        from_attributes = True


class CustomHoursUpdate(BaseModel):
    date: date
    opening_time: time
    closing_time: time
    is_closed: bool = False


class CustomHoursResponse(BaseModel):
    id: int
    restaurant_id: int
    date: date
    opening_time: time
    closing_time: time
    is_closed: bool

    class Config:
        from_attributes = True


# =============================================================================
# TABLES
# =============================================================================

class TableCreate(BaseModel):
    table_number: str = Field(..., min_length=1, max_length=20, examples=["T4"])
    capacity: int = Field(..., gt=0, le=100, examples=[4])
    location_notes: Optional[str] = Field(None, max_length=500, examples=["Window"])
    status: TableStatus = TableStatus.AVAILABLE


class TableStatusUpdate(BaseModel):
    status: TableStatus


class TableResponse(BaseModel):
    id: int
    restaurant_id: int
    table_number: str
    capacity: int
    status: TableStatus
    location_notes: Optional[str]

    class Config:
        from_attributes = True


# =============================================================================
# BOOKINGS
# =============================================================================

class BookingCreate(BaseModel):
    """A booking request. Without table_id the engine picks the best-fit table."""

    customer_name: str = Field(..., min_length=2, max_length=100, examples=["Jane Doe"])
    customer_phone: str = Field(..., min_length=10, max_length=20, examples=["+15551234567"])
    customer_email: Optional[str] = Field(None, max_length=255)

    booking_date: date
    booking_time: time = Field(..., examples=["19:30"])
    party_size: int = Field(..., examples=[4])
    notes: Optional[str] = Field(None, max_length=500)

    # Staff options
    is_walk_in: bool = False
    table_id: Optional[int] = Field(None, description="Staff-chosen table; skips best fit")
    confirm: Optional[bool] = Field(None, description="Defaults to AUTO_CONFIRM_BOOKINGS")

    @field_validator('customer_phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        cleaned = re.sub(r'[^\d]', '', v)
        if len(cleaned) < 10:
            raise ValueError('Phone number must have at least 10 digits')
        return v

    @field_validator('customer_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not re.match(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', v):
            raise ValueError('Invalid email address')
        return v


class BookingResponse(BaseModel):
    id: int
    restaurant_id: int
    table_id: Optional[int]
    customer_id: int
    booking_date: date
    booking_time: time
    party_size: int
    status: BookingStatus
    assignment_method: AssignmentMethod
    was_on_waitlist: bool
    is_walk_in: bool
    notes: Optional[str]
    created_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class WaitlistEntryResponse(BaseModel):
    id: int
    restaurant_id: int
    customer_id: int
    requested_date: date
    requested_time: time
    party_size: int
    status: WaitlistStatus
    priority_order: int
    notes: Optional[str]
    offered_table_id: Optional[int]
    notified_at: Optional[datetime]
    offer_expires_at: Optional[datetime]
    booking_id: Optional[int]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AllocationResponse(BaseModel):
    """Outcome of a booking request: a table, or a place in the queue."""
    success: bool
    message: str
    assignment_method: AssignmentMethod
    booking: Optional[BookingResponse] = None
    waitlist_entry: Optional[WaitlistEntryResponse] = None

    @model_validator(mode="after")
    def exactly_one_outcome(self) -> "AllocationResponse":
        if (self.booking is None) == (self.waitlist_entry is None):
            raise ValueError("Exactly one of booking or waitlist_entry must be set")
        return self


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class TableReassign(BaseModel):
    table_id: int


# =============================================================================
# AVAILABILITY
# =============================================================================

class AvailabilityResponse(BaseModel):
    booking_date: date
    booking_time: time
    total_capacity: int
    booked_capacity: int
    held_capacity: int = Field(0, description="Seats on tables held by an unexpired waitlist offer")
    available_capacity: int
    waiting_count: int

    class Config:
        from_attributes = True


class DayAvailabilityResponse(BaseModel):
    restaurant_id: int
    date: date
    slots: List[AvailabilityResponse]


# =============================================================================
# SYSTEM
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    timestamp: datetime
