"""
Shared fixtures.

The database URL is set before any carenow import because the default
engine is built when carenow.lib.db is first imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFICATION_PROVIDER", "console")

from datetime import date, datetime, timezone

import pytest
import pytest_asyncio

from carenow.lib.clock import FrozenClock
from carenow.lib.db import get_engine, get_session_factory, init_db
from carenow.lib.metrics import reset_metrics
from carenow.models.bookings import Booking, BookingStatus, PaymentStatus
from carenow.models.partners import Partner
from carenow.models.users import ClientUser

# Monday 08:00 UTC; bookings default to the next day (a Tuesday)
NOW = datetime(2030, 6, 3, 8, 0, tzinfo=timezone.utc)
TOMORROW = date(2030, 6, 4)

# Somewhere in Ho Chi Minh City
CLIENT_LAT = 10.7769
CLIENT_LON = 106.7009

WEEKDAY_HOURS = {
    day: ["08:00", "09:00", "10:00", "11:00", "13:00", "14:00", "15:00"]
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
}


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock():
    return FrozenClock(NOW, "UTC")


@pytest.fixture
def make_partner():
    """Factory for Partner rows with sensible defaults."""

    def _make(partner_id: str = "partner-1", **overrides) -> Partner:
        fields = dict(
            id=partner_id,
            name=f"Partner {partner_id}",
            services=["elder_care"],
            experience_years=5,
            rating=4.5,
            total_reviews=30,
            is_verified=True,
            latitude=CLIENT_LAT,
            longitude=CLIENT_LON,
            working_hours=WEEKDAY_HOURS,
            is_available=True,
            fcm_token=f"token-{partner_id}",
        )
        fields.update(overrides)
        return Partner(**fields)

    return _make


@pytest.fixture
def make_booking():
    """Factory for Booking rows; defaults to a confirmed 10:00 booking tomorrow."""

    def _make(booking_id: str = "booking-1", **overrides) -> Booking:
        fields = dict(
            id=booking_id,
            user_id="client-1",
            partner_id="partner-1",
            service_id="elder_care",
            service_name="Elder care",
            scheduled_date=TOMORROW,
            time_slot="10:00",
            hours=2.0,
            status=BookingStatus.CONFIRMED,
            total_price=300.0,
            payment_status=PaymentStatus.UNPAID,
            client_address="12 Nguyen Hue, District 1, Ho Chi Minh City",
            client_latitude=CLIENT_LAT,
            client_longitude=CLIENT_LON,
            version=1,
            created_at=NOW,
        )
        fields.update(overrides)
        return Booking(**fields)

    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh SQLite file per test."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'carenow.db'}")
    await init_db(engine)
    yield get_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seed(session_factory):
    """Insert model instances and return them."""

    async def _seed(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows

    return _seed


@pytest.fixture
def client_user():
    return ClientUser(id="client-1", name="Lan", fcm_token="token-client-1")
