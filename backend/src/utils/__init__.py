"""
Utility modules for the notification engine backend.

This package contains shared utilities used across the application:
- logging_config: Structured logging (api, services, jobs, db loggers)
- time_utils: Clocks and time-of-day window helpers
- recurring_task: Self-rescheduling background task runner
"""

from backend.src.utils.time_utils import Clock, ManualClock

__all__ = [
    "Clock",
    "ManualClock",
]
