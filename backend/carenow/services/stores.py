"""
Persistence collaborators for the booking core.

BookingStore, PartnerDirectory and UserDirectory are abstract so the core
can run against any backend; the Sql* classes implement them with
SQLAlchemy async sessions. Each call opens its own session so a timed-out
call never leaves a shared session half-used.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carenow.lib.geo import GeoPoint, distance_km
from carenow.lib.logging import get_logger
from carenow.models.bookings import Booking, BookingStatus
from carenow.models.partners import Partner
from carenow.models.users import ClientUser
from carenow.services.errors import ConcurrentUpdateFailure, NotFoundFailure


logger = get_logger(__name__)


class BookingStore(ABC):
    """Booking persistence with conditional (compare-and-swap) writes."""

    @abstractmethod
    async def create(self, booking: Booking) -> str:
        """Persist a new booking and return its id."""

    @abstractmethod
    async def get_by_id(self, booking_id: str) -> Booking:
        """Raises NotFoundFailure if the booking does not exist."""

    @abstractmethod
    async def update_status(
        self,
        booking_id: str,
        status: BookingStatus,
        cancellation_reason: Optional[str] = None,
        expected_status: Optional[BookingStatus] = None,
        expected_version: Optional[int] = None,
    ) -> Booking:
        """
        Move a booking to `status`.

        The write only applies while the stored status/version still match
        the expected values; otherwise ConcurrentUpdateFailure is raised.
        """

    @abstractmethod
    async def assign_partner(
        self,
        booking_id: str,
        partner_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
        expected_status: BookingStatus = BookingStatus.PENDING,
        expected_version: Optional[int] = None,
    ) -> Booking:
        """Set the partner and status in one conditional write."""

    @abstractmethod
    async def query_by_partner_and_status(self, partner_id: str, status: BookingStatus) -> list[Booking]:
        ...

    @abstractmethod
    async def query_by_user_and_status(
        self,
        user_id: str,
        status: BookingStatus,
        limit: int = 20,
    ) -> list[Booking]:
        ...

    @abstractmethod
    async def query_by_date_range(
        self,
        owner_id: str,
        start: date,
        end: date,
        is_partner: bool = False,
    ) -> list[Booking]:
        ...


class PartnerDirectory(ABC):
    """Read access to partner profiles."""

    @abstractmethod
    async def query_available_partners(
        self,
        services: Optional[Sequence[str]] = None,
        location: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
        min_rating: Optional[float] = None,
        limit: int = 20,
    ) -> list[Partner]:
        """Available partners offering any of `services`, best rated first."""

    @abstractmethod
    async def get_by_id(self, partner_id: str) -> Partner:
        ...

    @abstractmethod
    async def get_top_rated(self, limit: int = 10) -> list[Partner]:
        ...


class UserDirectory(ABC):
    @abstractmethod
    async def get_by_id(self, user_id: str) -> ClientUser:
        ...


class SqlBookingStore(BookingStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, booking: Booking) -> str:
        async with self._session_factory() as session:
            session.add(booking)
            await session.commit()
            logger.info("Booking persisted", extra={"booking_id": booking.id})
            return booking.id

    async def get_by_id(self, booking_id: str) -> Booking:
        async with self._session_factory() as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundFailure("Booking", booking_id)
            return booking

    async def _conditional_update(
        self,
        booking_id: str,
        values: dict,
        expected_status: Optional[BookingStatus],
        expected_version: Optional[int],
    ) -> Booking:
        stmt = update(Booking).where(Booking.id == booking_id)
        if expected_status is not None:
            stmt = stmt.where(Booking.status == expected_status)
        if expected_version is not None:
            stmt = stmt.where(Booking.version == expected_version)
        stmt = stmt.values(version=Booking.version + 1, **values).execution_options(synchronize_session=False)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                current = await session.get(Booking, booking_id)
                if current is None:
                    raise NotFoundFailure("Booking", booking_id)
                raise ConcurrentUpdateFailure(
                    f"Booking {booking_id} changed concurrently "
                    f"(now {current.status.value}, version {current.version})"
                )
            await session.commit()
            return await session.get(Booking, booking_id, populate_existing=True)

    async def update_status(
        self,
        booking_id: str,
        status: BookingStatus,
        cancellation_reason: Optional[str] = None,
        expected_status: Optional[BookingStatus] = None,
        expected_version: Optional[int] = None,
    ) -> Booking:
        now = datetime.now(timezone.utc)
        values = {"status": status, "updated_at": now}
        if status == BookingStatus.COMPLETED:
            values["completed_at"] = now
        elif status == BookingStatus.CANCELLED:
            values["cancelled_at"] = now
            if cancellation_reason is not None:
                values["cancellation_reason"] = cancellation_reason
        return await self._conditional_update(booking_id, values, expected_status, expected_version)

    async def assign_partner(
        self,
        booking_id: str,
        partner_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
        expected_status: BookingStatus = BookingStatus.PENDING,
        expected_version: Optional[int] = None,
    ) -> Booking:
        values = {
            "partner_id": partner_id,
            "status": status,
            "updated_at": datetime.now(timezone.utc),
        }
        return await self._conditional_update(booking_id, values, expected_status, expected_version)

    async def query_by_partner_and_status(self, partner_id: str, status: BookingStatus) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.partner_id == partner_id, Booking.status == status)
            .order_by(Booking.scheduled_date, Booking.time_slot)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def query_by_user_and_status(
        self,
        user_id: str,
        status: BookingStatus,
        limit: int = 20,
    ) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id, Booking.status == status)
            .order_by(Booking.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def query_by_date_range(
        self,
        owner_id: str,
        start: date,
        end: date,
        is_partner: bool = False,
    ) -> list[Booking]:
        owner_column = Booking.partner_id if is_partner else Booking.user_id
        stmt = (
            select(Booking)
            .where(
                owner_column == owner_id,
                Booking.scheduled_date >= start,
                Booking.scheduled_date <= end,
            )
            .order_by(Booking.scheduled_date)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class SqlPartnerDirectory(PartnerDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def query_available_partners(
        self,
        services: Optional[Sequence[str]] = None,
        location: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
        min_rating: Optional[float] = None,
        limit: int = 20,
    ) -> list[Partner]:
        stmt = select(Partner).where(Partner.is_available.is_(True))
        if min_rating is not None:
            stmt = stmt.where(Partner.rating >= min_rating)
        stmt = stmt.order_by(Partner.rating.desc(), Partner.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            partners = list(result.scalars().all())

        # JSON service lists and geo radius are filtered client-side
        if services:
            wanted = set(services)
            partners = [p for p in partners if wanted.intersection(p.services or [])]
        if location is not None and radius_km is not None:
            partners = [p for p in partners if distance_km(location, p.location) <= radius_km]

        return partners[:limit]

    async def get_by_id(self, partner_id: str) -> Partner:
        async with self._session_factory() as session:
            partner = await session.get(Partner, partner_id)
            if partner is None:
                raise NotFoundFailure("Partner", partner_id)
            return partner

    async def get_top_rated(self, limit: int = 10) -> list[Partner]:
        stmt = (
            select(Partner)
            .where(Partner.is_verified.is_(True))
            .order_by(Partner.rating.desc(), Partner.total_reviews.desc(), Partner.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class SqlUserDirectory(UserDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_id(self, user_id: str) -> ClientUser:
        async with self._session_factory() as session:
            user = await session.get(ClientUser, user_id)
            if user is None:
                raise NotFoundFailure("User", user_id)
            return user
