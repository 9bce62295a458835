"""
Booking Lifecycle Manager.

Owns the booking state machine:
    pending -> confirmed -> in-progress -> completed
    pending/confirmed -> cancelled

Every transition is a conditional write against the status and version
that were read, so concurrent callers cannot both win. Notifications are
sent after the write and never undo it.
"""
from datetime import date
from typing import Any, Optional
from uuid import uuid4

from carenow.lib.clock import Clock, SystemClock
from carenow.lib.geo import GeoPoint
from carenow.lib.logging import get_logger, log_with_context
from carenow.lib.metrics import get_metrics_collector
from carenow.lib.settings import settings
from carenow.models.bookings import Booking, BookingStatus, PaymentStatus
from carenow.models.partners import Partner
from carenow.services.calls import CallPolicy, call_collaborator
from carenow.services.errors import (
    CareNowError,
    ConcurrentUpdateFailure,
    NotFoundFailure,
    PartnerConflictFailure,
    RetrievalFailure,
    ServerFailure,
    ValidationFailure,
)
from carenow.services.matching_service import PartnerLocks, PartnerMatchingService
from carenow.services.notification_service import NotificationDispatcher
from carenow.services.stores import BookingStore, PartnerDirectory, UserDirectory
from carenow.services.validation_service import validate_booking

logger = get_logger(__name__)


class BookingManagementService:
    """Applies booking transitions and notifies the other party."""

    def __init__(
        self,
        booking_store: BookingStore,
        partner_directory: PartnerDirectory,
        user_directory: UserDirectory,
        dispatcher: NotificationDispatcher,
        matcher: Optional[PartnerMatchingService] = None,
        clock: Optional[Clock] = None,
        locks: Optional[PartnerLocks] = None,
        policy: Optional[CallPolicy] = None,
    ):
        self.booking_store = booking_store
        self.partner_directory = partner_directory
        self.user_directory = user_directory
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.policy = policy
        self.matcher = matcher or PartnerMatchingService(
            partner_directory, booking_store, clock=self.clock, policy=policy
        )
        self.locks = locks or PartnerLocks()
        self.metrics = get_metrics_collector()

    # Reads

    async def get_booking(self, booking_id: str) -> Booking:
        return await call_collaborator(
            "get_booking",
            self.booking_store.get_by_id,
            booking_id,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

    async def get_partner_booking_stats(self, partner_id: str, start: date, end: date) -> dict[str, Any]:
        """Totals over the partner's bookings scheduled within [start, end]."""
        bookings = await call_collaborator(
            "query_by_date_range",
            self.booking_store.query_by_date_range,
            partner_id,
            start,
            end,
            is_partner=True,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

        completed = [b for b in bookings if b.is_completed]
        return {
            "partner_id": partner_id,
            "total_bookings": len(bookings),
            "completed_bookings": len(completed),
            "cancelled_bookings": sum(1 for b in bookings if b.is_cancelled),
            "total_earnings": sum(b.total_price for b in completed if b.is_paid),
            "total_hours": sum(b.hours for b in completed),
        }

    # Transitions

    async def create_booking(
        self,
        user_id: str,
        service_id: str,
        service_name: str,
        scheduled_date: date,
        time_slot: str,
        hours: float,
        total_price: float,
        client_address: str,
        client_location: GeoPoint,
        special_instructions: Optional[str] = None,
        auto_assign_partner: bool = True,
    ) -> Booking:
        """
        Validate and persist a pending booking, then optionally auto-assign.

        Auto-assignment problems (matcher failure, no candidate, lost race)
        leave the booking pending rather than failing the request.

        Raises:
            ValidationFailure: request failed one or more rules
            ServerFailure: the booking could not be persisted
        """
        result = validate_booking(
            scheduled_date=scheduled_date,
            time_slot=time_slot,
            hours=hours,
            total_price=total_price,
            client_address=client_address,
            now=self.clock.now(),
        )
        if not result.is_valid:
            logger.info(
                "Booking request rejected",
                extra={"user_id": user_id, "errors": result.errors},
            )
            raise ValidationFailure(result.error_message, result.errors)

        booking = Booking(
            id=str(uuid4()),
            user_id=user_id,
            partner_id="",
            service_id=service_id,
            service_name=service_name,
            scheduled_date=scheduled_date,
            time_slot=time_slot,
            hours=hours,
            total_price=total_price,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            client_address=client_address,
            client_latitude=client_location.latitude,
            client_longitude=client_location.longitude,
            special_instructions=special_instructions,
            version=1,
            created_at=self.clock.utcnow(),
        )

        try:
            await call_collaborator("create_booking", self.booking_store.create, booking, policy=self.policy)
        except ServerFailure:
            # A timed-out create may still have committed; ids are ours, so look it up
            persisted = await self._find_persisted(booking.id)
            if persisted is None:
                raise
            logger.warning(
                "Booking create reported failure but the row exists",
                extra={"booking_id": booking.id},
            )
            booking = persisted
        self.metrics.increment_transitions(BookingStatus.PENDING.value)
        logger.info(
            "Booking created",
            extra={"booking_id": booking.id, "user_id": user_id, "service_id": service_id},
        )

        if auto_assign_partner:
            return await self._auto_assign(booking)
        return booking

    async def _find_persisted(self, booking_id: str) -> Optional[Booking]:
        try:
            return await self.get_booking(booking_id)
        except NotFoundFailure:
            return None
        except CareNowError as e:
            logger.warning(
                "Could not confirm whether a failed create was persisted",
                extra={"booking_id": booking_id, "error": e.message},
            )
            return None

    async def _auto_assign(self, booking: Booking) -> Booking:
        taken: set[str] = set()
        for _ in range(settings.auto_assign_attempts):
            try:
                partner = await self.matcher.auto_assign_partner(
                    [booking.service_id],
                    booking.client_location,
                    booking.scheduled_date,
                    booking.time_slot,
                    exclude=frozenset(taken),
                )
            except CareNowError as e:
                logger.warning(
                    "Auto-assignment failed, booking stays pending",
                    extra={"booking_id": booking.id, "error": e.message},
                )
                return booking

            if partner is None:
                logger.info("No partner available, booking stays pending", extra={"booking_id": booking.id})
                return booking

            async with self.locks.for_partner(partner.id):
                # Matching ran unlocked; another request may have taken the slot since
                still_free = await self.matcher.availability_checker.is_available(
                    partner, booking.scheduled_date, booking.time_slot
                )
                if not still_free:
                    logger.info(
                        "Matched partner was taken meanwhile, trying the next one",
                        extra={"booking_id": booking.id, "partner_id": partner.id},
                    )
                    taken.add(partner.id)
                    continue

                try:
                    assigned = await call_collaborator(
                        "assign_partner",
                        self.booking_store.assign_partner,
                        booking.id,
                        partner.id,
                        status=BookingStatus.CONFIRMED,
                        expected_status=BookingStatus.PENDING,
                        expected_version=booking.version,
                        policy=self.policy,
                    )
                except CareNowError as e:
                    # The booking itself changed or the write failed; another partner would not help
                    logger.warning(
                        "Partner assignment write failed, booking stays pending",
                        extra={"booking_id": booking.id, "partner_id": partner.id, "error": e.message},
                    )
                    return booking

            self.metrics.increment_transitions(BookingStatus.CONFIRMED.value)
            logger.info(
                "Partner auto-assigned",
                extra={"booking_id": assigned.id, "partner_id": partner.id},
            )
            await self._notify_partner(
                partner,
                assigned,
                "New booking",
                f"You have a new booking for {assigned.service_name}",
                "new_booking",
            )
            return assigned

        logger.info(
            "Every matched partner was taken meanwhile, booking stays pending",
            extra={"booking_id": booking.id, "partners_tried": sorted(taken)},
        )
        return booking

    async def accept_booking(self, booking_id: str, partner_id: str) -> Booking:
        """
        Partner accepts a pending booking.

        Accepting a booking the same partner already holds returns it
        unchanged.

        Raises:
            PartnerConflictFailure: another partner holds the booking
            ValidationFailure: booking is not pending
        """
        booking = await self.get_booking(booking_id)

        if booking.has_partner and booking.partner_id != partner_id:
            raise PartnerConflictFailure("Booking is already assigned to another partner")
        if booking.is_confirmed:
            return booking
        if not booking.is_pending:
            raise ValidationFailure(f"Booking cannot be accepted while {booking.status.value}")

        try:
            updated = await call_collaborator(
                "assign_partner",
                self.booking_store.assign_partner,
                booking.id,
                partner_id,
                status=BookingStatus.CONFIRMED,
                expected_status=BookingStatus.PENDING,
                expected_version=booking.version,
                policy=self.policy,
            )
        except ConcurrentUpdateFailure:
            current = await self.get_booking(booking_id)
            if current.is_confirmed and current.partner_id == partner_id:
                return current
            if current.has_partner and current.partner_id != partner_id:
                raise PartnerConflictFailure("Booking is already assigned to another partner")
            raise

        self._record_transition(updated, partner_id=partner_id)
        await self._notify_client(
            updated,
            "Booking confirmed",
            f"Your {updated.service_name} booking has been confirmed",
            "booking_confirmed",
        )
        return updated

    async def start_booking(self, booking_id: str, partner_id: str) -> Booking:
        booking = await self.get_booking(booking_id)

        if booking.partner_id != partner_id:
            raise ValidationFailure("Only the assigned partner can start this booking")
        if not booking.is_confirmed:
            raise ValidationFailure(f"Booking cannot be started while {booking.status.value}")

        updated = await self._transition(booking, BookingStatus.IN_PROGRESS)
        self._record_transition(updated, partner_id=partner_id)
        await self._notify_client(
            updated,
            "Service started",
            f"Your {updated.service_name} service has started",
            "booking_started",
        )
        return updated

    async def complete_booking(self, booking_id: str, partner_id: str) -> Booking:
        booking = await self.get_booking(booking_id)

        if booking.partner_id != partner_id:
            raise ValidationFailure("Only the assigned partner can complete this booking")
        if not booking.is_in_progress:
            raise ValidationFailure(f"Booking cannot be completed while {booking.status.value}")

        updated = await self._transition(booking, BookingStatus.COMPLETED)
        self._record_transition(updated, partner_id=partner_id)
        await self._notify_client(
            updated,
            "Service completed",
            f"Your {updated.service_name} service is complete. Please leave a review!",
            "booking_completed",
        )
        return updated

    async def cancel_booking(self, booking_id: str, user_id: str, cancellation_reason: str) -> Booking:
        """
        Client cancels a pending or confirmed booking that starts more
        than the configured lead time from now.
        """
        booking = await self.get_booking(booking_id)

        if booking.user_id != user_id:
            raise ValidationFailure("Only the client who made this booking can cancel it")
        if not booking.can_be_cancelled(self.clock.now(), settings.cancellation_lead_time_hours):
            raise ValidationFailure("Booking can no longer be cancelled")

        updated = await self._transition(booking, BookingStatus.CANCELLED, cancellation_reason)
        self._record_transition(updated, user_id=user_id)

        if booking.has_partner:
            try:
                partner = await call_collaborator(
                    "get_partner",
                    self.partner_directory.get_by_id,
                    booking.partner_id,
                    policy=self.policy,
                    retry=True,
                    failure_cls=RetrievalFailure,
                )
            except CareNowError as e:
                logger.warning(
                    "Could not load partner for cancellation notice",
                    extra={"booking_id": booking.id, "partner_id": booking.partner_id, "error": e.message},
                )
            else:
                await self._notify_partner(
                    partner,
                    updated,
                    "Booking cancelled",
                    f"The {updated.service_name} booking was cancelled by the client",
                    "booking_cancelled",
                )
        return updated

    # Helpers

    async def _transition(
        self,
        booking: Booking,
        status: BookingStatus,
        cancellation_reason: Optional[str] = None,
    ) -> Booking:
        if not booking.can_transition_to(status):
            raise ValidationFailure(f"Cannot move booking from {booking.status.value} to {status.value}")

        return await call_collaborator(
            "update_status",
            self.booking_store.update_status,
            booking.id,
            status,
            cancellation_reason=cancellation_reason,
            expected_status=booking.status,
            expected_version=booking.version,
            policy=self.policy,
        )

    def _record_transition(self, booking: Booking, **actor: str) -> None:
        self.metrics.increment_transitions(booking.status.value)
        log_with_context(
            logger,
            "info",
            f"Booking moved to {booking.status.value}",
            booking_id=booking.id,
            status=booking.status.value,
            version=booking.version,
            **actor,
        )

    async def _notify_client(self, booking: Booking, title: str, body: str, kind: str) -> None:
        try:
            user = await call_collaborator(
                "get_user",
                self.user_directory.get_by_id,
                booking.user_id,
                policy=self.policy,
                retry=True,
                failure_cls=RetrievalFailure,
            )
        except CareNowError as e:
            logger.warning(
                "Could not load client for notification",
                extra={"booking_id": booking.id, "user_id": booking.user_id, "error": e.message},
            )
            return

        await self.dispatcher.send(user.fcm_token, title, body, {"booking_id": booking.id, "type": kind})

    async def _notify_partner(self, partner: Partner, booking: Booking, title: str, body: str, kind: str) -> None:
        await self.dispatcher.send(partner.fcm_token, title, body, {"booking_id": booking.id, "type": kind})
