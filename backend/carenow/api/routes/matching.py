"""
Partner search and recommendation API routes.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from carenow.api.dependencies import Actor, get_current_actor, get_matching_service, require_client
from carenow.api.routes.partners import PartnerResponse
from carenow.lib.geo import GeoPoint
from carenow.lib.timeslots import TIME_SLOT_PATTERN
from carenow.services.matching_service import PartnerMatchingService


# Pydantic schemas
class PartnerSearchRequest(BaseModel):
    service_types: List[str] = Field(..., min_length=1)
    client_latitude: float = Field(..., ge=-90, le=90)
    client_longitude: float = Field(..., ge=-180, le=180)
    scheduled_date: date
    time_slot: str = Field(..., pattern=TIME_SLOT_PATTERN.pattern)
    max_distance_km: Optional[float] = Field(None, gt=0)
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    max_results: Optional[int] = Field(None, ge=1, le=50)


class MatchedPartnerResponse(BaseModel):
    partner: PartnerResponse
    score: float
    distance_km: float


# Router
router = APIRouter(prefix="/matching", tags=["matching"])


@router.post("/search", response_model=List[MatchedPartnerResponse])
async def search_partners(
    request: PartnerSearchRequest,
    actor: Actor = Depends(get_current_actor),
    matcher: PartnerMatchingService = Depends(get_matching_service),
) -> List[MatchedPartnerResponse]:
    """
    Rank partners free at the requested date and time, best first.

    Radius, minimum rating and result count fall back to the configured
    search defaults.
    """
    ranked = await matcher.find_matching_partners(
        service_types=request.service_types,
        client_location=GeoPoint(request.client_latitude, request.client_longitude),
        scheduled_date=request.scheduled_date,
        time_slot=request.time_slot,
        max_distance_km=request.max_distance_km,
        min_rating=request.min_rating,
        max_results=request.max_results,
    )
    return [
        MatchedPartnerResponse(
            partner=PartnerResponse.model_validate(s.partner),
            score=round(s.score, 2),
            distance_km=round(s.distance_km, 3),
        )
        for s in ranked
    ]


@router.get("/recommendations", response_model=List[PartnerResponse])
async def recommend_partners(
    limit: int = Query(5, ge=1, le=20),
    actor: Actor = Depends(require_client),
    matcher: PartnerMatchingService = Depends(get_matching_service),
) -> List[PartnerResponse]:
    """Partners for the services the client booked before, or top-rated ones."""
    partners = await matcher.get_recommended_partners(actor.id, limit=limit)
    return [PartnerResponse.model_validate(p) for p in partners]
