"""
Partner Matcher: ranks partners for a service request and picks one for
auto-assignment.

Score, capped at 100:
    rating * 10                        0-50
    min(experience_years * 2, 20)      0-20
    matched / requested services * 20  0-20
    max(10 - distance_km, 0)           0-10
    5 if verified                      0-5
    min(total_reviews / 10, 5)         0-5
"""
import asyncio
import weakref
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Collection, Optional, Sequence

from carenow.lib.clock import Clock, SystemClock
from carenow.lib.geo import GeoPoint, distance_km
from carenow.lib.logging import get_logger
from carenow.lib.metrics import get_metrics_collector
from carenow.lib.settings import settings
from carenow.models.bookings import BookingStatus
from carenow.models.partners import Partner
from carenow.services.availability_service import AvailabilityChecker
from carenow.services.calls import CallPolicy, call_collaborator
from carenow.services.errors import RetrievalFailure, ServerFailure, ValidationFailure
from carenow.services.stores import BookingStore, PartnerDirectory

logger = get_logger(__name__)

MAX_EXPERIENCE_POINTS = 20
SERVICE_MATCH_POINTS = 20
MAX_DISTANCE_POINTS = 10
VERIFIED_BONUS = 5
MAX_REVIEW_POINTS = 5
MAX_SCORE = 100


@dataclass(frozen=True)
class ScoredPartner:
    partner: Partner
    score: float
    distance_km: float


def calculate_matching_score(
    partner: Partner,
    client_location: GeoPoint,
    service_types: Sequence[str],
) -> float:
    score = partner.rating * 10
    score += min(partner.experience_years * 2, MAX_EXPERIENCE_POINTS)

    offered = set(partner.services or [])
    matching = sum(1 for service in service_types if service in offered)
    score += matching / len(service_types) * SERVICE_MATCH_POINTS

    score += max(MAX_DISTANCE_POINTS - distance_km(client_location, partner.location), 0)

    if partner.is_verified:
        score += VERIFIED_BONUS

    score += min(partner.total_reviews / 10, MAX_REVIEW_POINTS)
    return min(score, MAX_SCORE)


class PartnerLocks:
    """
    One asyncio.Lock per partner id.

    Holding a partner's lock across the availability check and the
    assignment write keeps two requests from booking the same slot.
    Locks are held weakly: once no request holds or waits on a partner's
    lock it is dropped, so the registry only tracks partners in use.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_partner(self, partner_id: str) -> asyncio.Lock:
        lock = self._locks.get(partner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[partner_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class PartnerMatchingService:
    """Finds, ranks and recommends partners."""

    def __init__(
        self,
        partner_directory: PartnerDirectory,
        booking_store: BookingStore,
        availability_checker: Optional[AvailabilityChecker] = None,
        clock: Optional[Clock] = None,
        policy: Optional[CallPolicy] = None,
    ):
        self.partner_directory = partner_directory
        self.booking_store = booking_store
        self.availability_checker = availability_checker or AvailabilityChecker(booking_store, policy)
        self.clock = clock or SystemClock()
        self.policy = policy
        self.metrics = get_metrics_collector()

    async def find_matching_partners(
        self,
        service_types: Sequence[str],
        client_location: GeoPoint,
        scheduled_date: date,
        time_slot: str,
        max_distance_km: Optional[float] = None,
        min_rating: Optional[float] = None,
        max_results: Optional[int] = None,
        exclude: Collection[str] = (),
    ) -> list[ScoredPartner]:
        """
        Rank available partners for a request, best first.

        The directory is asked for `max_results * 2` candidates; when fewer
        than `max_results` of them are free the window doubles until enough
        are found or the directory runs out. Partner ids in `exclude` are
        skipped. Ties on score are broken by partner id so the ranking is stable.

        Raises:
            ValidationFailure: service_types is empty
            RetrievalFailure: partner query failed after retries
        """
        if not service_types:
            raise ValidationFailure("At least one service type is required")

        max_distance_km = settings.match_max_distance_km if max_distance_km is None else max_distance_km
        min_rating = settings.match_min_rating if min_rating is None else min_rating
        max_results = settings.match_max_results if max_results is None else max_results
        excluded = set(exclude)

        day = self.availability_checker.day_of_week(scheduled_date)
        scored: list[ScoredPartner] = []
        limit = max_results * 2
        checked = 0
        while True:
            candidates = await call_collaborator(
                "query_available_partners",
                self.partner_directory.query_available_partners,
                services=list(service_types),
                location=client_location,
                radius_km=max_distance_km,
                min_rating=min_rating,
                limit=limit,
                policy=self.policy,
                retry=True,
                failure_cls=RetrievalFailure,
            )
            # The directory's order is stable, so earlier pages are already checked
            for partner in candidates[checked:]:
                if partner.id in excluded:
                    continue
                if not await self.availability_checker.is_available(partner, scheduled_date, time_slot, day):
                    continue
                scored.append(
                    ScoredPartner(
                        partner=partner,
                        score=calculate_matching_score(partner, client_location, service_types),
                        distance_km=distance_km(client_location, partner.location),
                    )
                )
            checked = len(candidates)
            if len(scored) >= max_results or len(candidates) < limit:
                break
            limit *= 2

        scored.sort(key=lambda s: (-s.score, s.partner.id))

        logger.info(
            "Partner search ranked candidates",
            extra={
                "candidates": checked,
                "available": len(scored),
                "scheduled_date": scheduled_date.isoformat(),
                "time_slot": time_slot,
            },
        )
        return scored[:max_results]

    async def auto_assign_partner(
        self,
        service_types: Sequence[str],
        client_location: GeoPoint,
        scheduled_date: date,
        time_slot: str,
        max_distance_km: Optional[float] = None,
        min_rating: Optional[float] = None,
        exclude: Collection[str] = (),
    ) -> Optional[Partner]:
        """Best single partner under the wider auto-assign radius, or None."""
        try:
            ranked = await self.find_matching_partners(
                service_types,
                client_location,
                scheduled_date,
                time_slot,
                max_distance_km=settings.auto_assign_max_distance_km if max_distance_km is None else max_distance_km,
                min_rating=settings.auto_assign_min_rating if min_rating is None else min_rating,
                max_results=1,
                exclude=exclude,
            )
        except ServerFailure:
            self.metrics.increment_matches("failed")
            raise

        if not ranked:
            self.metrics.increment_matches("no_candidates")
            return None

        self.metrics.increment_matches("matched")
        return ranked[0].partner

    async def get_recommended_partners(self, user_id: str, limit: int = 5) -> list[Partner]:
        """
        Partners for the services the user booked before; top-rated
        partners when the user has no completed bookings.
        """
        history = await call_collaborator(
            "query_by_user_and_status",
            self.booking_store.query_by_user_and_status,
            user_id,
            BookingStatus.COMPLETED,
            limit=20,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

        service_ids = list(dict.fromkeys(booking.service_id for booking in history))
        if not service_ids:
            return await call_collaborator(
                "get_top_rated",
                self.partner_directory.get_top_rated,
                limit,
                policy=self.policy,
                retry=True,
                failure_cls=RetrievalFailure,
            )

        return await call_collaborator(
            "query_available_partners",
            self.partner_directory.query_available_partners,
            services=service_ids,
            min_rating=settings.recommendation_min_rating,
            limit=limit,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

    async def get_partner_availability(self, partner_id: str, days: int = 7) -> dict[str, list[str]]:
        """Free working-hour slots per ISO date for the next `days` days, today first."""
        partner = await call_collaborator(
            "get_partner",
            self.partner_directory.get_by_id,
            partner_id,
            policy=self.policy,
            retry=True,
            failure_cls=RetrievalFailure,
        )

        try:
            confirmed = await self.availability_checker.confirmed_bookings(partner.id)
        except ServerFailure as e:
            logger.warning(
                "Booking lookup failed, reporting working hours only",
                extra={"partner_id": partner.id, "error": e.message},
            )
            confirmed = []

        today = self.clock.now().date()
        availability: dict[str, list[str]] = {}
        for offset in range(days):
            day = today + timedelta(days=offset)
            weekday = self.availability_checker.day_of_week(day)
            free = []
            for slot in partner.slots_for_day(weekday):
                if await self.availability_checker.is_available(partner, day, slot, weekday, confirmed=confirmed):
                    free.append(slot)
            availability[day.isoformat()] = free

        return availability
