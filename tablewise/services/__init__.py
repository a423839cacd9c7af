"""
                        Services Module

Business logic of the booking engine. Collaborators with side effects
follow the hybrid pattern: Mock (development) and Real (production)
implementations behind one interface.

Services:
    - hours: opening hours and the slot grid
    - availability: capacity snapshots and candidate tables
    - allocation: BookingEngine, the library surface
    - waitlist: queue, promotion and offers
    - inventory: restaurants, tables, calendars, customers
    - notifications: guest SMS / email
    - dispatch: Celery hand-off for ledger exports and offer timers
    - excel_manager: process-safe Excel booking ledger
"""

from functools import lru_cache

from tablewise.services.allocation import AllocationRequest, AllocationResult, BookingEngine
from tablewise.services.excel_manager import ExcelManager


@lru_cache()
def get_booking_engine() -> BookingEngine:
    """Process-wide engine bound to the application database."""
    from tablewise.database import async_session_maker
    from tablewise.services.dispatch import get_task_dispatcher
    from tablewise.services.notifications import get_notification_service

    return BookingEngine(
        async_session_maker,
        notifier=get_notification_service(),
        dispatcher=get_task_dispatcher(),
    )


__all__ = [
    "AllocationRequest",
    "AllocationResult",
    "BookingEngine",
    "ExcelManager",
    "get_booking_engine",
]
