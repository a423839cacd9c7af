import os
import tempfile

# Settings are read at import time; point them at throwaway locations first
os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("TASK_DISPATCH_MODE", "inline")
os.environ.setdefault("DATA_DIRECTORY", tempfile.mkdtemp(prefix="tablewise-test-"))

from datetime import date, time
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tablewise.core.config import get_settings
from tablewise.database import init_db
from tablewise.services.allocation import AllocationRequest, BookingEngine
from tablewise.services.dispatch import InlineTaskDispatcher
from tablewise.services.notifications.base import (
    BaseNotificationService,
    BookingNotice,
    NotificationResult,
    OfferNotice,
)

# A Friday, far enough ahead to count as upcoming
BOOKING_DAY = date(2030, 6, 7)
DINNER = time(19, 0)


class RecordingNotifier(BaseNotificationService):
    def __init__(self):
        self.confirmations: list[BookingNotice] = []
        self.offers: list[OfferNotice] = []
        self.sms: list[tuple[str, str]] = []

    @property
    def provider_name(self) -> str:
        return "recording"

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        self.sms.append((to_phone, message))
        return NotificationResult(success=True, message_id=f"SM{len(self.sms)}", provider="recording")

    async def send_email(self, to_email, subject, body_html, body_text=None) -> NotificationResult:
        return NotificationResult(success=True, provider="recording")

    async def send_booking_confirmation(self, notice: BookingNotice) -> NotificationResult:
        self.confirmations.append(notice)
        return await super().send_booking_confirmation(notice)

    async def send_waitlist_offer(self, notice: OfferNotice) -> NotificationResult:
        self.offers.append(notice)
        return await super().send_waitlist_offer(notice)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tablewise.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher():
    return InlineTaskDispatcher(export_enabled=False)


@pytest.fixture
def settings():
    return get_settings().model_copy(
        update={
            "auto_confirm_bookings": True,
            "waitlist_offer_timeout_minutes": 15,
            "app_base_url": "http://testserver",
        }
    )


@pytest.fixture
def booking_engine(session_maker, notifier, dispatcher, settings):
    return BookingEngine(session_maker, notifier=notifier, dispatcher=dispatcher, settings=settings)


@pytest.fixture
async def restaurant(booking_engine):
    """Open every day 18:00-22:00 on a 15-minute grid, no tables yet."""
    restaurant = await booking_engine.inventory.create_restaurant(
        "Test Bistro", time_slot_duration_minutes=15
    )
    for day in range(7):
        await booking_engine.inventory.set_weekly_hours(restaurant.id, day, time(18, 0), time(22, 0))
    return restaurant


@pytest.fixture
async def customer(booking_engine):
    return await booking_engine.inventory.get_or_create_customer(
        "Ada Guest", "555-000-1111", "ada@example.com"
    )


@pytest.fixture
def add_tables(booking_engine, restaurant):
    async def _add(*capacities: int) -> list:
        existing = await booking_engine.inventory.list_tables(restaurant.id)
        tables = []
        for offset, capacity in enumerate(capacities, start=len(existing) + 1):
            tables.append(
                await booking_engine.inventory.add_table(restaurant.id, f"T{offset}", capacity)
            )
        return tables

    return _add


@pytest.fixture
def new_customer(booking_engine):
    counter = iter(range(2000, 9999))

    async def _new(name: Optional[str] = None):
        n = next(counter)
        return await booking_engine.inventory.get_or_create_customer(
            name or f"Guest {n}", f"555-100-{n:04d}"
        )

    return _new


@pytest.fixture
def make_request(restaurant, customer):
    def _make(party_size: int = 2, at: time = DINNER, on: date = BOOKING_DAY, **kwargs):
        kwargs.setdefault("customer_id", customer.id)
        return AllocationRequest(
            restaurant_id=restaurant.id,
            booking_date=on,
            booking_time=at,
            party_size=party_size,
            **kwargs,
        )

    return _make
