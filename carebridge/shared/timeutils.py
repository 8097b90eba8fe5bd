"""Shared time helpers for the availability ledger"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

TIME_OF_DAY_BUCKETS = {
    "morning": (8, 12),
    "afternoon": (12, 17),
    "evening": (17, 21),
}


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def day_of_week(value: date) -> int:
    """Day index with Sunday = 0 ... Saturday = 6"""
    return value.isoweekday() % 7


def parse_time(value: str) -> time:
    """
    Parse "HH:MM", "HH:MM:SS" or "HH:MM AM/PM" into a time.

    Raises:
        ValueError: If the string is not a recognised time format
    """
    value = value.strip()
    for fmt in ("%H:%M", "%H:%M:%S", "%I:%M %p"):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time format: {value}")


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


def days_until(moment: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days (rounded up) from now until moment; None when unknown"""
    if moment is None:
        return None
    delta = (moment - now).total_seconds() / 86400
    return max(0, math.ceil(delta))


def time_of_day_bucket(moment: datetime) -> Optional[str]:
    for name, (start_hour, end_hour) in TIME_OF_DAY_BUCKETS.items():
        if start_hour <= moment.hour < end_hour:
            return name
    return None


def daterange(start: date, days: int):
    for offset in range(days):
        yield start + timedelta(days=offset)
