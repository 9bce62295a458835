"""
Partner model - service providers that can be matched to bookings.
"""
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, JSON, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from carenow.lib.db import Base
from carenow.lib.geo import GeoPoint
from carenow.lib.timeslots import WEEKDAYS, is_time_slot


class Partner(Base):
    """
    Partner entity - owned by the partner-profile service; the booking
    core only reads it.
    """
    __tablename__ = "partners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Skills and experience
    services: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Reputation
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, index=True)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Location
    latitude: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    working_hours: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Work schedule: {monday: ['09:00', '10:00'], ...}",
    )

    # Global on/off switch set by the partner
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    fcm_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    __table_args__ = (
        CheckConstraint("rating >= 0 AND rating <= 5", name="partner_rating_range"),
    )

    @validates("rating")
    def _validate_rating(self, key, value):
        if value is None or not 0.0 <= value <= 5.0:
            raise ValueError(f"rating must be within [0, 5], got {value}")
        return value

    @validates("working_hours")
    def _validate_working_hours(self, key, value):
        value = value or {}
        for day, slots in value.items():
            if day not in WEEKDAYS:
                raise ValueError(f"Invalid weekday in working hours: {day!r}")
            for slot in slots:
                if not is_time_slot(slot):
                    raise ValueError(f"Invalid time slot for {day}: {slot!r}")
        return value

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    def slots_for_day(self, day: str) -> list[str]:
        return list((self.working_hours or {}).get(day.lower(), []))

    def is_available_at(self, day: str, time_slot: str) -> bool:
        """Whether the partner works `time_slot` on weekday `day`."""
        if not self.is_available:
            return False
        return time_slot in self.slots_for_day(day)

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, rating={self.rating}, services={self.services})>"
