"""
API dependencies for FastAPI dependency injection.

Provides the caller identity from the bearer token and wires the booking
services to their SQLAlchemy-backed collaborators.
"""
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import InvalidTokenError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carenow.api.middleware.error_handler import ForbiddenException, UnauthorizedException
from carenow.lib.clock import Clock, SystemClock
from carenow.lib.db import SessionLocal
from carenow.lib.jwt import CLIENT, PARTNER, get_user_from_token
from carenow.services.booking_service import BookingManagementService
from carenow.services.matching_service import PartnerLocks, PartnerMatchingService
from carenow.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from carenow.services.stores import (
    BookingStore,
    PartnerDirectory,
    SqlBookingStore,
    SqlPartnerDirectory,
    SqlUserDirectory,
    UserDirectory,
)

# HTTP Bearer token security scheme
security = HTTPBearer()

# Shared by every request so assignments to one partner queue up in-process
_partner_locks = PartnerLocks()
_dispatcher: NotificationDispatcher | None = None


@dataclass(frozen=True)
class Actor:
    id: str
    user_type: str

    @property
    def is_client(self) -> bool:
        return self.user_type == CLIENT

    @property
    def is_partner(self) -> bool:
        return self.user_type == PARTNER


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Dependency to get the calling client or partner from the JWT token.

    Raises:
        UnauthorizedException: 401 if the token is invalid or lacks claims
    """
    try:
        subject = get_user_from_token(credentials.credentials)
    except InvalidTokenError as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}")

    return Actor(id=subject.user_id, user_type=subject.user_type)


async def require_client(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_client:
        raise ForbiddenException("Client access required")
    return actor


async def require_partner(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_partner:
        raise ForbiddenException("Partner access required")
    return actor


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionLocal


def get_clock() -> Clock:
    return SystemClock()


def get_partner_locks() -> PartnerLocks:
    return _partner_locks


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = get_notification_dispatcher()
    return _dispatcher


def get_booking_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BookingStore:
    return SqlBookingStore(session_factory)


def get_partner_directory(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PartnerDirectory:
    return SqlPartnerDirectory(session_factory)


def get_user_directory(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserDirectory:
    return SqlUserDirectory(session_factory)


def get_matching_service(
    booking_store: BookingStore = Depends(get_booking_store),
    partner_directory: PartnerDirectory = Depends(get_partner_directory),
    clock: Clock = Depends(get_clock),
) -> PartnerMatchingService:
    return PartnerMatchingService(partner_directory, booking_store, clock=clock)


def get_booking_service(
    booking_store: BookingStore = Depends(get_booking_store),
    partner_directory: PartnerDirectory = Depends(get_partner_directory),
    user_directory: UserDirectory = Depends(get_user_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    matcher: PartnerMatchingService = Depends(get_matching_service),
    clock: Clock = Depends(get_clock),
    locks: PartnerLocks = Depends(get_partner_locks),
) -> BookingManagementService:
    return BookingManagementService(
        booking_store,
        partner_directory,
        user_directory,
        dispatcher,
        matcher=matcher,
        clock=clock,
        locks=locks,
    )
