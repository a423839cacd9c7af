"""
Background work hand-off.

The engine never blocks on slow side effects. Ledger exports and waitlist
offer timers are handed to a dispatcher:
    - CeleryTaskDispatcher: queues Celery tasks (default)
    - InlineTaskDispatcher: runs exports in-process and records timers,
      for single-process development without a worker. Offer deadlines are
      still enforced because promotion expires overdue offers itself.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from typing import Any

from tablewise.core.config import TaskDispatchMode, get_settings

logger = logging.getLogger(__name__)


class BaseTaskDispatcher(ABC):

    @abstractmethod
    def export_booking(self, payload: dict[str, Any]) -> None:
        """Queue a committed booking for the Excel ledger."""

    @abstractmethod
    def schedule_offer_expiry(self, entry_id: int, expires_at: datetime) -> None:
        """Arrange for expire_offer(entry_id) to run at expires_at."""


class CeleryTaskDispatcher(BaseTaskDispatcher):

    def export_booking(self, payload: dict[str, Any]) -> None:
        from tablewise.tasks import export_booking_to_excel

        try:
            export_booking_to_excel.delay(payload)
        except Exception as e:
            # Broker down: the ledger lags, the booking itself stands
            logger.error(f"Could not queue ledger export for Booking #{payload.get('booking_id')}: {e}")

    def schedule_offer_expiry(self, entry_id: int, expires_at: datetime) -> None:
        from tablewise.tasks import expire_waitlist_offer

        try:
            expire_waitlist_offer.apply_async(args=[entry_id], eta=expires_at)
        except Exception as e:
            logger.error(f"Could not schedule expiry for entry #{entry_id}, sweep will catch it: {e}")


class InlineTaskDispatcher(BaseTaskDispatcher):

    def __init__(self, export_enabled: bool = True):
        self.export_enabled = export_enabled
        self.exported: list[dict[str, Any]] = []
        self.scheduled: list[tuple[int, datetime]] = []

    def export_booking(self, payload: dict[str, Any]) -> None:
        self.exported.append(payload)
        if self.export_enabled:
            from tablewise.services.excel_manager import ExcelManager

            ExcelManager.export_booking(payload)

    def schedule_offer_expiry(self, entry_id: int, expires_at: datetime) -> None:
        self.scheduled.append((entry_id, expires_at))
        logger.debug(f"Offer for entry #{entry_id} expires at {expires_at.isoformat()}")


@lru_cache()
def get_task_dispatcher() -> BaseTaskDispatcher:
    settings = get_settings()
    if settings.task_dispatch_mode == TaskDispatchMode.INLINE:
        logger.info("Task dispatch: inline")
        return InlineTaskDispatcher()
    logger.info("Task dispatch: celery")
    return CeleryTaskDispatcher()
