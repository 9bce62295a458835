"""
Validation Gate for booking requests.

Pure predicates plus `validate_booking`, which evaluates every rule and
returns all failures at once instead of stopping at the first one.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Mapping, Optional, Sequence

from carenow.lib.settings import settings
from carenow.lib.timeslots import WEEKDAYS, combine, is_time_slot


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    @property
    def error_message(self) -> str:
        return "\n".join(self.errors)

    @property
    def first_error(self) -> str:
        return self.errors[0] if self.errors else ""


def is_valid_time_slot(time_slot: Optional[str]) -> bool:
    return bool(time_slot) and is_time_slot(time_slot)


def is_valid_future_date(scheduled_date: date, now: datetime) -> bool:
    """Today or later, compared by calendar day."""
    return scheduled_date >= now.date()


def is_valid_booking_time(
    scheduled_date: date,
    time_slot: str,
    now: datetime,
    min_lead_time_hours: float = settings.booking_min_lead_time_hours,
) -> bool:
    """Start must be at least `min_lead_time_hours` after `now`."""
    if not is_valid_time_slot(time_slot):
        return False
    start = combine(scheduled_date, time_slot, now.tzinfo)
    return start - now >= timedelta(hours=min_lead_time_hours)


def is_valid_hours(
    hours: float,
    min_hours: float = settings.booking_min_hours,
    max_hours: float = settings.booking_max_hours,
) -> bool:
    return min_hours <= hours <= max_hours


def is_valid_price(price: float, max_price: float = settings.booking_max_price) -> bool:
    return 0 < price <= max_price


def is_valid_address(
    address: Optional[str],
    min_length: int = settings.address_min_length,
    max_length: int = settings.address_max_length,
) -> bool:
    if not address:
        return False
    return min_length <= len(address.strip()) <= max_length


def is_valid_rating(rating: float) -> bool:
    return 0.0 <= rating <= 5.0


def is_valid_working_hours(working_hours: Mapping[str, Sequence[str]]) -> bool:
    for day, slots in working_hours.items():
        if day.lower() not in WEEKDAYS:
            return False
        if not all(is_valid_time_slot(slot) for slot in slots):
            return False
    return True


def validate_booking(
    scheduled_date: date,
    time_slot: str,
    hours: float,
    total_price: float,
    client_address: str,
    now: datetime,
) -> ValidationResult:
    """
    Run every booking rule and collect the failures in a fixed order:
    date, lead time, hours, price, address.
    """
    errors = []

    if not is_valid_future_date(scheduled_date, now):
        errors.append("Scheduled date must be today or in the future")

    if not is_valid_booking_time(scheduled_date, time_slot, now):
        errors.append(
            f"Booking must start at least {settings.booking_min_lead_time_hours:g} hours from now "
            "and use an HH:MM time slot"
        )

    if not is_valid_hours(hours):
        errors.append(
            f"Hours must be between {settings.booking_min_hours:g} and {settings.booking_max_hours:g}"
        )

    if not is_valid_price(total_price):
        errors.append(f"Total price must be greater than 0 and at most {settings.booking_max_price:g}")

    if not is_valid_address(client_address):
        errors.append(
            f"Client address must be {settings.address_min_length}-{settings.address_max_length} characters"
        )

    return ValidationResult(is_valid=not errors, errors=errors)
