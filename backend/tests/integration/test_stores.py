"""
Integration tests for the SQLAlchemy stores against SQLite.
"""
from datetime import date

import pytest

from carenow.lib.geo import GeoPoint
from carenow.models.bookings import BookingStatus
from carenow.services.errors import ConcurrentUpdateFailure, NotFoundFailure
from carenow.services.stores import SqlBookingStore, SqlPartnerDirectory, SqlUserDirectory

CLIENT = GeoPoint(10.7769, 106.7009)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_and_get_booking(session_factory, make_booking):
    store = SqlBookingStore(session_factory)

    booking_id = await store.create(make_booking("b1", status=BookingStatus.PENDING, partner_id=""))
    loaded = await store.get_by_id(booking_id)

    assert booking_id == "b1"
    assert loaded.status == BookingStatus.PENDING
    assert loaded.scheduled_date == date(2030, 6, 4)
    assert loaded.total_price == 300.0
    assert loaded.version == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_get_missing_booking(session_factory):
    with pytest.raises(NotFoundFailure):
        await SqlBookingStore(session_factory).get_by_id("missing")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_assign_partner_is_compare_and_swap(session_factory, make_booking):
    """Only the first of two assignments against the same version wins."""
    store = SqlBookingStore(session_factory)
    await store.create(make_booking("b1", status=BookingStatus.PENDING, partner_id=""))

    assigned = await store.assign_partner("b1", "partner-1", expected_version=1)

    assert assigned.status == BookingStatus.CONFIRMED
    assert assigned.partner_id == "partner-1"
    assert assigned.version == 2
    assert assigned.updated_at is not None

    with pytest.raises(ConcurrentUpdateFailure):
        await store.assign_partner("b1", "partner-2", expected_version=1)

    assert (await store.get_by_id("b1")).partner_id == "partner-1"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_status_checks_expected_status(session_factory, make_booking):
    store = SqlBookingStore(session_factory)
    await store.create(make_booking("b1"))

    with pytest.raises(ConcurrentUpdateFailure):
        await store.update_status("b1", BookingStatus.COMPLETED, expected_status=BookingStatus.IN_PROGRESS)

    started = await store.update_status("b1", BookingStatus.IN_PROGRESS, expected_status=BookingStatus.CONFIRMED)
    assert started.status == BookingStatus.IN_PROGRESS


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_status_sets_terminal_timestamps(session_factory, make_booking):
    store = SqlBookingStore(session_factory)
    await store.create(make_booking("done", status=BookingStatus.IN_PROGRESS))
    await store.create(make_booking("gone", status=BookingStatus.PENDING, partner_id=""))

    completed = await store.update_status("done", BookingStatus.COMPLETED)
    cancelled = await store.update_status("gone", BookingStatus.CANCELLED, cancellation_reason="Sick")

    assert completed.completed_at is not None
    assert completed.cancelled_at is None
    assert cancelled.cancelled_at is not None
    assert cancelled.cancellation_reason == "Sick"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_missing_booking(session_factory):
    with pytest.raises(NotFoundFailure):
        await SqlBookingStore(session_factory).update_status("missing", BookingStatus.CANCELLED)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_booking_queries(session_factory, make_booking):
    store = SqlBookingStore(session_factory)
    await store.create(make_booking("b1", time_slot="14:00"))
    await store.create(make_booking("b2", time_slot="09:00"))
    await store.create(make_booking("b3", status=BookingStatus.COMPLETED, scheduled_date=date(2030, 5, 20)))
    await store.create(make_booking("b4", partner_id="partner-2", user_id="client-2"))

    confirmed = await store.query_by_partner_and_status("partner-1", BookingStatus.CONFIRMED)
    completed = await store.query_by_user_and_status("client-1", BookingStatus.COMPLETED)
    june = await store.query_by_date_range("partner-1", date(2030, 6, 1), date(2030, 6, 30), is_partner=True)
    client_june = await store.query_by_date_range("client-1", date(2030, 6, 1), date(2030, 6, 30))

    assert [b.id for b in confirmed] == ["b2", "b1"]
    assert [b.id for b in completed] == ["b3"]
    assert {b.id for b in june} == {"b1", "b2"}
    assert {b.id for b in client_june} == {"b1", "b2"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_partner_directory_filters(session_factory, seed, make_partner):
    await seed(
        make_partner("near", rating=4.0),
        make_partner("best", rating=4.9),
        make_partner("far", rating=5.0, latitude=CLIENT.latitude + 0.3),
        make_partner("low", rating=2.5),
        make_partner("off", is_available=False),
        make_partner("pets", services=["pet_care"]),
    )
    directory = SqlPartnerDirectory(session_factory)

    partners = await directory.query_available_partners(
        services=["elder_care"], location=CLIENT, radius_km=10, min_rating=3.0, limit=10
    )

    assert [p.id for p in partners] == ["best", "near"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_partner_directory_limit_and_unbounded_search(session_factory, seed, make_partner):
    await seed(*[make_partner(f"p{i}", rating=3.0 + i * 0.1) for i in range(5)])
    directory = SqlPartnerDirectory(session_factory)

    partners = await directory.query_available_partners(services=["elder_care"], limit=2)

    assert [p.id for p in partners] == ["p4", "p3"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_top_rated_prefers_reviews_on_equal_rating(session_factory, seed, make_partner):
    await seed(
        make_partner("few", rating=4.8, total_reviews=5),
        make_partner("many", rating=4.8, total_reviews=90),
        make_partner("unverified", rating=5.0, is_verified=False),
    )

    partners = await SqlPartnerDirectory(session_factory).get_top_rated(limit=5)

    assert [p.id for p in partners] == ["many", "few"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_partner_and_user_lookup(session_factory, seed, make_partner, client_user):
    await seed(make_partner("p1"), client_user)

    assert (await SqlPartnerDirectory(session_factory).get_by_id("p1")).working_hours["monday"][0] == "08:00"
    assert (await SqlUserDirectory(session_factory).get_by_id("client-1")).fcm_token == "token-client-1"
    with pytest.raises(NotFoundFailure):
        await SqlPartnerDirectory(session_factory).get_by_id("nobody")
    with pytest.raises(NotFoundFailure):
        await SqlUserDirectory(session_factory).get_by_id("nobody")
