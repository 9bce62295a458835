"""
Helpers for "HH:MM" time slots and weekday names.
"""
import re
from datetime import date, datetime, time, tzinfo
from typing import Optional

TIME_SLOT_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def is_time_slot(value: str) -> bool:
    return bool(value) and TIME_SLOT_PATTERN.match(value) is not None


def parse_time_slot(value: str) -> time:
    """Parse "HH:MM" into a time. Raises ValueError on malformed input."""
    if not is_time_slot(value):
        raise ValueError(f"Invalid time slot: {value!r}")
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def day_of_week(day: date) -> str:
    """Lowercase English weekday name of a date."""
    return WEEKDAYS[day.weekday()]


def combine(day: date, time_slot: str, tz: Optional[tzinfo] = None) -> datetime:
    """Wall-clock start of `time_slot` on `day`."""
    return datetime.combine(day, parse_time_slot(time_slot), tzinfo=tz)
