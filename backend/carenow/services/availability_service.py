"""
Availability Checker: is a partner free for a date and time slot?

A partner is free when the slot is in their working hours for that weekday
and no confirmed booking on the same date overlaps the requested start.
"""
from datetime import date, timedelta
from typing import Optional

from carenow.lib.logging import get_logger
from carenow.lib import timeslots
from carenow.models.bookings import Booking, BookingStatus
from carenow.models.partners import Partner
from carenow.services.calls import CallPolicy, call_collaborator
from carenow.services.errors import RetrievalFailure, ServerFailure
from carenow.services.stores import BookingStore

logger = get_logger(__name__)

# Lower bound of the conflict window is existing_start minus this, exclusive
CONFLICT_GUARD_BAND = timedelta(minutes=1)


def is_time_conflict(existing_time_slot: str, existing_hours: float, new_time_slot: str) -> bool:
    """
    True when the new start falls inside (existing_start - 1min, existing_end).

    Only the new start is compared; a new booking that begins before an
    existing one and runs into it is not reported.
    """
    anchor = date(2000, 1, 3)
    existing_start = timeslots.combine(anchor, existing_time_slot)
    existing_end = existing_start + timedelta(minutes=round(existing_hours * 60))
    new_start = timeslots.combine(anchor, new_time_slot)
    return existing_start - CONFLICT_GUARD_BAND < new_start < existing_end


class AvailabilityChecker:
    """Checks working hours and confirmed-booking conflicts for a partner."""

    def __init__(self, booking_store: BookingStore, policy: Optional[CallPolicy] = None):
        self.booking_store = booking_store
        self.policy = policy

    @staticmethod
    def day_of_week(scheduled_date: date) -> str:
        return timeslots.day_of_week(scheduled_date)

    async def confirmed_bookings(self, partner_id: str) -> list[Booking]:
        return await call_collaborator(
            "query_by_partner_and_status",
            self.booking_store.query_by_partner_and_status,
            partner_id,
            BookingStatus.CONFIRMED,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

    async def is_available(
        self,
        partner: Partner,
        scheduled_date: date,
        time_slot: str,
        day_of_week: Optional[str] = None,
        confirmed: Optional[list[Booking]] = None,
    ) -> bool:
        """
        Args:
            partner: Candidate partner
            scheduled_date: Requested calendar date
            time_slot: Requested "HH:MM" start
            day_of_week: Lowercase weekday of scheduled_date (derived if omitted)
            confirmed: Already-fetched confirmed bookings of the partner

        Returns:
            False on a working-hours miss or a conflict. True when the
            booking lookup fails, so a store outage never hides partners.
        """
        day = day_of_week or self.day_of_week(scheduled_date)
        if not partner.is_available_at(day, time_slot):
            return False

        if confirmed is None:
            try:
                confirmed = await self.confirmed_bookings(partner.id)
            except ServerFailure as e:
                logger.warning(
                    "Booking lookup failed, treating partner as available",
                    extra={"partner_id": partner.id, "error": e.message},
                )
                return True

        for booking in confirmed:
            if booking.scheduled_date == scheduled_date and is_time_conflict(
                booking.time_slot, booking.hours, time_slot
            ):
                logger.debug(
                    "Partner has a conflicting booking",
                    extra={"partner_id": partner.id, "booking_id": booking.id},
                )
                return False

        return True
