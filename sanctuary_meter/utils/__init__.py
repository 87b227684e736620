"""
Utility module for Sanctuary Meter.

Contains display helpers and logging setup used by the command line driver.
"""

from .formatting import (
    format_duration,
    format_session_date,
    format_clock_time,
    format_db,
    format_frequency,
    format_rt60,
)
from .logging_config import setup_logging

__all__ = [
    "format_duration",
    "format_session_date",
    "format_clock_time",
    "format_db",
    "format_frequency",
    "format_rt60",
    "setup_logging",
]
