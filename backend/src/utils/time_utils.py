"""
Time-of-day arithmetic and the clock source used by the engine.

Quiet-hours windows are expressed as minutes since midnight. A window whose
start is after its end crosses midnight (e.g. 22:00-08:00).
"""

from datetime import datetime, time, timedelta
from typing import Union


MINUTES_PER_DAY = 24 * 60

TimeOfDay = Union[time, datetime, str]


class Clock:
    """System clock returning naive UTC instants."""

    def now(self) -> datetime:
        return datetime.utcnow()


class ManualClock(Clock):
    """
    Clock pinned to a fixed instant that only moves when told to.

    Used by operator scripts and tests to replay scheduling decisions.
    """

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta built from kwargs."""
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current


def parse_time_of_day(value: str) -> time:
    """
    Parse an "HH:MM" 24-hour clock string.

    Raises:
        ValueError: If the string is not a valid HH:MM value
    """
    if not isinstance(value, str):
        raise ValueError(f"Time of day must be a string, got {type(value).__name__}")

    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM")

    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day '{value}', out of range")

    return time(hours, minutes)


def minutes_of_day(value: TimeOfDay) -> int:
    """Convert a time of day to minutes since midnight, in [0, 1440)."""
    if isinstance(value, str):
        value = parse_time_of_day(value)
    return value.hour * 60 + value.minute


def is_within_window(candidate: int, start: int, end: int) -> bool:
    """
    Check whether a minute-of-day falls inside a window.

    Both bounds are inclusive. When start > end the window crosses midnight
    and covers [start, 1440) plus [0, end].
    """
    if start <= end:
        return start <= candidate <= end
    return candidate >= start or candidate <= end


def crosses_midnight(start: int, end: int) -> bool:
    return start > end
