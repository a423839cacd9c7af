"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from tablewise.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from tablewise.core.errors import BookingError, error_to_http

__all__ = ["get_settings", "setup_logging", "Settings", "EnvironmentMode", "BookingError", "error_to_http"]
