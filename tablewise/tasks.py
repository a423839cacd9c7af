"""
Celery Tasks
Background work for the booking engine: ledger exports and waitlist offer
expiry.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablewise.celery_worker import celery_app
from tablewise.core.config import get_logger
from tablewise.database import create_worker_engine
from tablewise.services.allocation import BookingEngine
from tablewise.services.dispatch import get_task_dispatcher
from tablewise.services.excel_manager import ExcelManager
from tablewise.services.notifications import get_notification_service

logger = get_logger(__name__)

T = TypeVar("T")


def run_with_engine(work: Callable[[BookingEngine], Awaitable[T]]) -> T:
    """
    Run async engine work from a sync task.

    Each call gets its own event loop and a NullPool database engine, so
    nothing outlives the loop it was created on.
    """
    async def runner() -> T:
        db_engine = create_worker_engine()
        try:
            booking_engine = BookingEngine(
                async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False),
                notifier=get_notification_service(),
                dispatcher=get_task_dispatcher(),
            )
            return await work(booking_engine)
        finally:
            await db_engine.dispose()

    return asyncio.run(runner())


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_booking_to_excel(self, booking_data: dict) -> dict:
    """
    Append a committed booking to the Excel ledger.

    Args:
        booking_data: JSON-safe booking row (see outbox.booking_payload)

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    booking_id = booking_data.get('booking_id', 'unknown')

    logger.info(f"📋 Task {task_id}: exporting Booking #{booking_id}")
    start_time = time.time()

    result = ExcelManager.export_booking(booking_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"✅ Task {task_id}: Booking #{booking_id} exported in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: Booking #{booking_id} failed - {result['message']}")

    return result


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def expire_waitlist_offer(self, entry_id: int) -> dict:
    """
    ETA callback for a waitlist offer.

    A no-op when the guest already confirmed, declined or withdrew.
    """
    entry = run_with_engine(lambda e: e.waitlist.expire_offer(entry_id))
    logger.info(f"⏰ Task {self.request.id}: entry #{entry_id} is {entry.status.value}")
    return {
        'entry_id': entry_id,
        'status': entry.status.value,
        'timestamp': datetime.now().isoformat(),
    }


@celery_app.task
def sweep_expired_offers() -> dict:
    """Periodic: expire every overdue offer and promote the next entries."""
    expired = run_with_engine(lambda e: e.waitlist.expire_stale_offers())
    return {
        'expired': expired,
        'timestamp': datetime.now().isoformat(),
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }


@celery_app.task
def clear_booking_ledger() -> dict:
    """
    Clear the Excel ledger (for testing/reset purposes).
    """
    success = ExcelManager.clear_all()
    return {
        'success': success,
        'message': 'Booking ledger cleared' if success else 'Failed to clear booking ledger',
        'timestamp': datetime.now().isoformat()
    }
