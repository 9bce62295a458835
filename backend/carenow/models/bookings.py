"""
Booking model - service engagements between clients and partners.
"""
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from uuid import uuid4
import enum

from sqlalchemy import String, Numeric, Float, Integer, Date, DateTime, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from carenow.lib.db import Base
from carenow.lib.geo import GeoPoint
from carenow.lib.timeslots import combine


class BookingStatus(str, enum.Enum):
    """Booking status state machine."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    UNPAID = "unpaid"
    PAID = "paid"


# pending → confirmed → in-progress → completed; cancelled from pending/confirmed
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    """
    Booking entity - one scheduled service engagement.
    State machine: pending → confirmed → in-progress → completed (or cancelled).
    """
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Empty until a partner is assigned
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Scheduling
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    time_slot: Mapped[str] = mapped_column(String(5), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # Payment
    total_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )

    # Client location
    client_address: Mapped[str] = mapped_column(String(200), nullable=False)
    client_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    client_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Optimistic concurrency: bumped on every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("total_price > 0", name="booking_price_positive"),
        CheckConstraint("hours >= 0.5 AND hours <= 12", name="booking_hours_range"),
        CheckConstraint(
            "partner_id != '' OR status IN ('pending', 'cancelled')",
            name="booking_partner_assigned",
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == BookingStatus.PENDING

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    @property
    def is_in_progress(self) -> bool:
        return self.status == BookingStatus.IN_PROGRESS

    @property
    def is_completed(self) -> bool:
        return self.status == BookingStatus.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def has_partner(self) -> bool:
        return bool(self.partner_id)

    @property
    def client_location(self) -> GeoPoint:
        return GeoPoint(self.client_latitude, self.client_longitude)

    def scheduled_start(self, tz: Optional[tzinfo] = None) -> datetime:
        """Start of the booking as a datetime in `tz`."""
        return combine(self.scheduled_date, self.time_slot, tz)

    def can_transition_to(self, status: BookingStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def can_be_cancelled(self, now: datetime, lead_time_hours: float = 2.0) -> bool:
        """
        Pending or confirmed bookings can be cancelled while the start is
        more than `lead_time_hours` away.
        """
        if not self.can_transition_to(BookingStatus.CANCELLED):
            return False
        start = self.scheduled_start(now.tzinfo)
        return start - now > timedelta(hours=lead_time_hours)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, user_id={self.user_id}, partner_id={self.partner_id})>"
