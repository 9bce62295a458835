"""
Partner-facing API routes: booking stats and open slots.
"""
from datetime import date
from typing import Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from carenow.api.dependencies import (
    Actor,
    get_booking_service,
    get_current_actor,
    get_matching_service,
    require_partner,
)
from carenow.api.middleware.error_handler import ForbiddenException
from carenow.services.booking_service import BookingManagementService
from carenow.services.matching_service import PartnerMatchingService


# Pydantic schemas
class PartnerResponse(BaseModel):
    id: str
    name: str
    services: List[str]
    experience_years: int
    rating: float
    total_reviews: int
    is_verified: bool
    latitude: float
    longitude: float

    model_config = {"from_attributes": True}


class PartnerStatsResponse(BaseModel):
    partner_id: str
    start: date
    end: date
    total_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    total_earnings: float
    total_hours: float


class PartnerAvailabilityResponse(BaseModel):
    partner_id: str
    availability: Dict[str, List[str]]


# Router
router = APIRouter(prefix="/partners", tags=["partners"])


@router.get("/{partner_id}/stats", response_model=PartnerStatsResponse)
async def get_partner_stats(
    partner_id: str,
    start: date = Query(..., description="First scheduled date (inclusive)"),
    end: date = Query(..., description="Last scheduled date (inclusive)"),
    actor: Actor = Depends(require_partner),
    service: BookingManagementService = Depends(get_booking_service),
) -> PartnerStatsResponse:
    """
    Booking totals for the calling partner over a date range.

    Earnings count completed, paid bookings; hours count completed ones.
    """
    if actor.id != partner_id:
        raise ForbiddenException("Partners can only view their own stats")

    stats = await service.get_partner_booking_stats(partner_id, start, end)
    return PartnerStatsResponse(start=start, end=end, **stats)


@router.get("/{partner_id}/availability", response_model=PartnerAvailabilityResponse)
async def get_partner_availability(
    partner_id: str,
    days: int = Query(7, ge=1, le=30, description="Number of days from today"),
    actor: Actor = Depends(get_current_actor),
    matcher: PartnerMatchingService = Depends(get_matching_service),
) -> PartnerAvailabilityResponse:
    availability = await matcher.get_partner_availability(partner_id, days=days)
    return PartnerAvailabilityResponse(partner_id=partner_id, availability=availability)
