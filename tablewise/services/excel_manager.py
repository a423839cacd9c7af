"""
Excel Booking Ledger with Concurrency Control

Appends every committed booking to an Excel ledger staff can open directly.
Many Celery workers may export at once, so every write happens under a
file lock.
"""

from datetime import datetime
from typing import Any
from pathlib import Path

import pandas as pd
from filelock import FileLock, Timeout

from tablewise.core.config import get_settings
import logging

settings = get_settings()
logger = logging.getLogger(__name__)

DATA_DIR = Path(settings.data_directory)


class ExcelManager:
    """Process-safe Excel ledger of bookings."""

    LOCK_TIMEOUT = settings.excel_lock_timeout

    BOOKING_COLUMNS = [
        "booking_id",
        "restaurant_id",
        "table_id",
        "table_number",
        "customer_id",
        "customer_name",
        "booking_date",
        "booking_time",
        "party_size",
        "status",
        "assignment_method",
        "was_on_waitlist",
        "is_walk_in",
        "notes",
        "created_at",
        "updated_at",
        "exported_at",
    ]

    @classmethod
    def ledger_file(cls) -> Path:
        return DATA_DIR / settings.excel_filename

    @classmethod
    def lock_file(cls) -> Path:
        return DATA_DIR / f"{settings.excel_filename}.lock"

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        if not DATA_DIR.exists():
            DATA_DIR.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {DATA_DIR}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path, columns: list) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
                return pd.DataFrame(columns=columns)
        return pd.DataFrame(columns=columns)

    @classmethod
    def export_booking(cls, booking_data: dict[str, Any]) -> dict[str, Any]:
        """Append one booking to the ledger with file locking."""
        cls._ensure_data_dir()

        booking_id = booking_data.get("booking_id", 0)
        result = {
            "success": False,
            "message": "",
            "booking_id": booking_id,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(cls.lock_file()), timeout=cls.LOCK_TIMEOUT)

            with lock:
                logger.debug(f"Lock acquired for Booking #{booking_id}")

                df = cls._load_or_create_df(cls.ledger_file(), cls.BOOKING_COLUMNS)

                export_time = datetime.now().isoformat()
                new_row = {column: booking_data.get(column) for column in cls.BOOKING_COLUMNS}
                new_row["exported_at"] = export_time

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(cls.ledger_file()), index=False, engine="openpyxl")

                logger.info(f"Booking #{booking_id} exported to Excel")

                result["success"] = True
                result["message"] = f"Booking #{booking_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for Booking #{booking_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({cls.LOCK_TIMEOUT}s)"
            logger.error(f"Lock timeout for Booking #{booking_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting Booking #{booking_id}")

        return result

    @classmethod
    def get_all_bookings(cls) -> list[dict[str, Any]]:
        """Get all ledger rows."""
        if not cls.ledger_file().exists():
            return []

        try:
            df = pd.read_excel(cls.ledger_file(), engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading bookings: {e}")
            return []

    @classmethod
    def clear_all(cls) -> bool:
        """Delete the ledger and its lock file."""
        try:
            for f in [cls.ledger_file(), cls.lock_file()]:
                if f.exists():
                    f.unlink()
            logger.info("Booking ledger cleared")
            return True
        except Exception as e:
            logger.error(f"Error clearing files: {e}")
            return False
