"""Utility functions for time arithmetic and date windows."""

import time
from datetime import date, timedelta
from typing import Iterator

from ..exceptions import InvalidSchedulingData
from .constants import WEEKEND_DAYS


def parse_time(value: str | int, field: str = "time") -> int:
    """Convert an ``HH:MM`` string to minutes since midnight.

    Integers are passed through so callers may supply either form.

    Args:
        value: Time as ``"HH:MM"`` or minutes since midnight.
        field: Field name reported on failure.

    Returns:
        Minutes since midnight (0-1440).
    """
    if isinstance(value, bool):
        raise InvalidSchedulingData(f"expected HH:MM, got {value!r}", field)
    if isinstance(value, int):
        minutes = value
    else:
        try:
            hours_str, minutes_str = str(value).strip().split(":")[:2]
            minutes = int(hours_str) * 60 + int(minutes_str)
        except ValueError:
            raise InvalidSchedulingData(f"expected HH:MM, got {value!r}", field) from None
    if not 0 <= minutes <= 24 * 60:
        raise InvalidSchedulingData(f"time out of range: {value!r}", field)
    return minutes


def format_time(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str | date, field: str = "date") -> date:
    """Parse an ISO ``YYYY-MM-DD`` date."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidSchedulingData(f"expected YYYY-MM-DD, got {value!r}", field) from None


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Check whether two half-open intervals [start, end) overlap."""
    return start_a < end_b and start_b < end_a


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def adjacent_dates(center: date, radius: int) -> list[date]:
    """Dates around ``center`` ordered by distance: d, d+1, d-1, d+2, d-2, ..."""
    dates = [center]
    for offset in range(1, radius + 1):
        dates.append(center + timedelta(days=offset))
        dates.append(center - timedelta(days=offset))
    return dates


def add_business_days(start: date, days: int) -> date:
    """Advance ``start`` by ``days`` working days, skipping weekends."""
    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() not in WEEKEND_DAYS:
            remaining -= 1
    return current


class Deadline:
    """Wall-clock budget for a long-running search."""

    def __init__(self, seconds: float | None = None):
        self.seconds = seconds
        self._started = time.monotonic()

    def expired(self) -> bool:
        if self.seconds is None:
            return False
        return time.monotonic() - self._started >= self.seconds

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def remaining(self) -> float | None:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)
