"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from carenow.models.users import ClientUser
from carenow.models.partners import Partner
from carenow.models.bookings import Booking, BookingStatus, PaymentStatus

__all__ = [
    "ClientUser",
    "Partner",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
]
