"""
FastAPI Application Entry Point

Tablewise Booking Engine - table allocation and waitlist API.
Thin HTTP wrappers over BookingEngine; every engine error maps to a status
code through tablewise.core.errors.ERROR_RULES.

Endpoints:
    - /api/restaurants...: restaurant, hours and table setup (staff)
    - POST /api/restaurants/{id}/bookings: allocate a table or join the waitlist
    - GET /api/restaurants/{id}/availability: capacity at one slot
    - GET /api/restaurants/{id}/slots: capacity for every slot of a day
    - /api/bookings/{id}...: lifecycle changes (cancel, complete, status, table)
    - /api/waitlist/{id}...: confirm, decline or withdraw
    - GET /health: System health check
"""

import asyncio
import sys
import logging
from datetime import date, datetime, time
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from tablewise.core.config import get_settings, setup_logging
from tablewise.core.errors import BookingError, error_to_http
from tablewise.database import get_db, init_db, engine
from tablewise.models import WaitlistStatus
from tablewise.schemas import (
    AllocationResponse,
    AvailabilityResponse,
    BookingCreate,
    BookingResponse,
    BookingStatusUpdate,
    ClosedDateCreate,
    ClosedDateResponse,
    CustomHoursResponse,
    CustomHoursUpdate,
    DayAvailabilityResponse,
    ErrorResponse,
    HealthResponse,
    RestaurantCreate,
    RestaurantResponse,
    TableCreate,
    TableReassign,
    TableResponse,
    TableStatusUpdate,
    WaitlistEntryResponse,
    WeeklyHoursResponse,
    WeeklyHoursUpdate,
)
from tablewise.services import AllocationRequest, BookingEngine, get_booking_engine

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    booking_engine = get_booking_engine()
    logger.info(f"✅ Notification Service: {booking_engine.notifier.provider_name}")
    logger.info(f"✅ Task dispatch: {settings.task_dispatch_mode.value}")
    logger.info(
        f"✅ Offers held for {settings.waitlist_offer_timeout_minutes} min, "
        f"auto-confirm {'on' if settings.auto_confirm_bookings else 'off'}"
    )

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant table allocation with best-fit assignment per time slot "
        "and a first-come-first-served waiting list."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine() -> BookingEngine:
    """Dependency returning the process-wide booking engine."""
    return get_booking_engine()


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    booking_engine: BookingEngine = Depends(get_engine),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    notification_status = (
        "healthy" if await booking_engine.notifier.health_check() else "unhealthy"
    )

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# RESTAURANT SETUP ENDPOINTS
# =============================================================================

@app.post(
    "/api/restaurants",
    response_model=RestaurantResponse,
    status_code=201,
    tags=["Restaurants"],
)
async def create_restaurant(
    data: RestaurantCreate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> RestaurantResponse:
    restaurant = await booking_engine.inventory.create_restaurant(
        name=data.name,
        time_slot_duration_minutes=data.time_slot_duration_minutes,
        address=data.address,
        phone=data.phone,
        email=data.email,
    )
    return RestaurantResponse.model_validate(restaurant)


@app.get(
    "/api/restaurants/{restaurant_id}",
    response_model=RestaurantResponse,
    responses=ERROR_RESPONSES,
    tags=["Restaurants"],
)
async def get_restaurant(
    restaurant_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> RestaurantResponse:
    restaurant = await booking_engine.inventory.get_restaurant(restaurant_id)
    return RestaurantResponse.model_validate(restaurant)


@app.put(
    "/api/restaurants/{restaurant_id}/hours",
    response_model=WeeklyHoursResponse,
    responses=ERROR_RESPONSES,
    tags=["Restaurants"],
)
async def set_weekly_hours(
    restaurant_id: int,
    data: WeeklyHoursUpdate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> WeeklyHoursResponse:
    row = await booking_engine.inventory.set_weekly_hours(
        restaurant_id, data.day_of_week, data.opening_time, data.closing_time, data.is_closed
    )
    return WeeklyHoursResponse.model_validate(row)


@app.post(
    "/api/restaurants/{restaurant_id}/closed-dates",
    response_model=ClosedDateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Restaurants"],
)
async def add_closed_date(
    restaurant_id: int,
    data: ClosedDateCreate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> ClosedDateResponse:
    row = await booking_engine.inventory.add_closed_date(
        restaurant_id, data.closed_date, data.reason
    )
    return ClosedDateResponse.model_validate(row)


@app.put(
    "/api/restaurants/{restaurant_id}/custom-hours",
    response_model=CustomHoursResponse,
    responses=ERROR_RESPONSES,
    tags=["Restaurants"],
)
async def set_custom_hours(
    restaurant_id: int,
    data: CustomHoursUpdate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> CustomHoursResponse:
    row = await booking_engine.inventory.set_custom_hours(
        restaurant_id, data.date, data.opening_time, data.closing_time, data.is_closed
    )
    return CustomHoursResponse.model_validate(row)


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.post(
    "/api/restaurants/{restaurant_id}/tables",
    response_model=TableResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def add_table(
    restaurant_id: int,
    data: TableCreate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> TableResponse:
    table = await booking_engine.inventory.add_table(
        restaurant_id,
        data.table_number,
        data.capacity,
        location_notes=data.location_notes,
        status=data.status,
    )
    return TableResponse.model_validate(table)


@app.get(
    "/api/restaurants/{restaurant_id}/tables",
    response_model=list[TableResponse],
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def list_tables(
    restaurant_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> list[TableResponse]:
    tables = await booking_engine.inventory.list_tables(restaurant_id)
    return [TableResponse.model_validate(table) for table in tables]


@app.patch(
    "/api/tables/{table_id}/status",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def set_table_status(
    table_id: int,
    data: TableStatusUpdate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> TableResponse:
    """Physical table state. Setting 'available' clears seated walk-ins."""
    table = await booking_engine.inventory.set_table_status(table_id, data.status)
    return TableResponse.model_validate(table)


# =============================================================================
# BOOKING ENDPOINTS
# =============================================================================

@app.post(
    "/api/restaurants/{restaurant_id}/bookings",
    response_model=AllocationResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
    summary="Book a Table",
)
async def create_booking(
    restaurant_id: int,
    data: BookingCreate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> AllocationResponse:
    """
    Allocate the best-fit table for the slot.

    When no table fits, the request joins the waiting list and the response
    carries the waitlist entry instead of a booking.
    """
    logger.info(
        f"Booking request: {data.customer_name}, party of {data.party_size}, "
        f"{data.booking_date.isoformat()} {data.booking_time:%H:%M}"
    )
    customer = await booking_engine.inventory.get_or_create_customer(
        data.customer_name, data.customer_phone, data.customer_email
    )
    result = await booking_engine.allocate(
        AllocationRequest(
            restaurant_id=restaurant_id,
            customer_id=customer.id,
            booking_date=data.booking_date,
            booking_time=data.booking_time,
            party_size=data.party_size,
            notes=data.notes,
            is_walk_in=data.is_walk_in,
            table_id=data.table_id,
            confirm=data.confirm,
        )
    )

    if result.waitlisted:
        return AllocationResponse(
            success=True,
            message="No table free for this slot; added to the waiting list",
            assignment_method=result.method,
            waitlist_entry=WaitlistEntryResponse.model_validate(result.waitlist_entry),
        )
    return AllocationResponse(
        success=True,
        message=f"Booking #{result.booking.id} {result.booking.status.value}",
        assignment_method=result.method,
        booking=BookingResponse.model_validate(result.booking),
    )


@app.get(
    "/api/restaurants/{restaurant_id}/bookings",
    response_model=list[BookingResponse],
    tags=["Bookings"],
)
async def list_bookings(
    restaurant_id: int,
    on: Optional[date] = Query(None, alias="date"),
    booking_engine: BookingEngine = Depends(get_engine),
) -> list[BookingResponse]:
    bookings = await booking_engine.list_bookings(restaurant_id, on)
    return [BookingResponse.model_validate(b) for b in bookings]


@app.get(
    "/api/bookings/{booking_id}",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
)
async def get_booking(
    booking_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    return BookingResponse.model_validate(await booking_engine.get_booking(booking_id))


@app.post(
    "/api/bookings/{booking_id}/cancel",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
)
async def cancel_booking(
    booking_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    """Cancel a booking. Cancelling twice is a no-op."""
    return BookingResponse.model_validate(await booking_engine.cancel(booking_id))


@app.post(
    "/api/bookings/{booking_id}/complete",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
)
async def complete_booking(
    booking_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    return BookingResponse.model_validate(await booking_engine.complete(booking_id))


@app.patch(
    "/api/bookings/{booking_id}/status",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
)
async def update_booking_status(
    booking_id: int,
    data: BookingStatusUpdate,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    booking = await booking_engine.update_status(booking_id, data.status)
    return BookingResponse.model_validate(booking)


@app.put(
    "/api/bookings/{booking_id}/table",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Bookings"],
)
async def reassign_table(
    booking_id: int,
    data: TableReassign,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    booking = await booking_engine.reassign_table(booking_id, data.table_id)
    return BookingResponse.model_validate(booking)


# =============================================================================
# AVAILABILITY ENDPOINTS
# =============================================================================

@app.get(
    "/api/restaurants/{restaurant_id}/availability",
    response_model=AvailabilityResponse,
    responses=ERROR_RESPONSES,
    tags=["Availability"],
)
async def get_availability(
    restaurant_id: int,
    on: date = Query(..., alias="date"),
    at: time = Query(..., alias="time"),
    booking_engine: BookingEngine = Depends(get_engine),
) -> AvailabilityResponse:
    snapshot = await booking_engine.availability(restaurant_id, on, at)
    return AvailabilityResponse.model_validate(snapshot)


@app.get(
    "/api/restaurants/{restaurant_id}/slots",
    response_model=DayAvailabilityResponse,
    responses=ERROR_RESPONSES,
    tags=["Availability"],
)
async def get_day_slots(
    restaurant_id: int,
    on: date = Query(..., alias="date"),
    booking_engine: BookingEngine = Depends(get_engine),
) -> DayAvailabilityResponse:
    """Every slot of the day with its capacity; empty when closed."""
    snapshots = await booking_engine.day_availability(restaurant_id, on)
    return DayAvailabilityResponse(
        restaurant_id=restaurant_id,
        date=on,
        slots=[AvailabilityResponse.model_validate(s) for s in snapshots],
    )


# =============================================================================
# WAITLIST ENDPOINTS
# =============================================================================

@app.get(
    "/api/restaurants/{restaurant_id}/waitlist",
    response_model=list[WaitlistEntryResponse],
    tags=["Waitlist"],
)
async def list_waitlist(
    restaurant_id: int,
    on: Optional[date] = Query(None, alias="date"),
    at: Optional[time] = Query(None, alias="time"),
    status: Optional[WaitlistStatus] = Query(None),
    booking_engine: BookingEngine = Depends(get_engine),
) -> list[WaitlistEntryResponse]:
    """Queue in priority order."""
    entries = await booking_engine.waitlist.list_entries(
        restaurant_id, on, at, statuses=[status] if status else None
    )
    return [WaitlistEntryResponse.model_validate(e) for e in entries]


@app.post(
    "/api/waitlist/{entry_id}/confirm",
    response_model=BookingResponse,
    responses=ERROR_RESPONSES,
    tags=["Waitlist"],
)
async def confirm_offer(
    entry_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    """Accept a table offer; returns the confirmed booking."""
    booking = await booking_engine.confirm_waitlist_offer(entry_id)
    return BookingResponse.model_validate(booking)


@app.post(
    "/api/waitlist/{entry_id}/decline",
    response_model=WaitlistEntryResponse,
    responses=ERROR_RESPONSES,
    tags=["Waitlist"],
)
async def decline_offer(
    entry_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    entry = await booking_engine.decline_waitlist_offer(entry_id)
    return WaitlistEntryResponse.model_validate(entry)


@app.delete(
    "/api/waitlist/{entry_id}",
    response_model=WaitlistEntryResponse,
    responses=ERROR_RESPONSES,
    tags=["Waitlist"],
)
async def withdraw_from_waitlist(
    entry_id: int,
    booking_engine: BookingEngine = Depends(get_engine),
) -> WaitlistEntryResponse:
    """Leave the queue. Withdrawing twice is a no-op."""
    entry = await booking_engine.withdraw_from_waitlist(entry_id)
    return WaitlistEntryResponse.model_validate(entry)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Engine errors are per-request and expected; map them through ERROR_RULES."""
    http_exc = error_to_http(exc)
    logger.info(f"{request.method} {request.url.path} -> {http_exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=http_exc.status_code,
        content={
            "success": False,
            "error": type(exc).__name__,
            "detail": exc.message,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
