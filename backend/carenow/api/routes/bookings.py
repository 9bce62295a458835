"""
Booking lifecycle API routes.
"""
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from carenow.api.dependencies import (
    Actor,
    get_booking_service,
    get_current_actor,
    require_client,
    require_partner,
)
from carenow.api.middleware.error_handler import ForbiddenException
from carenow.lib.geo import GeoPoint
from carenow.models.bookings import BookingStatus, PaymentStatus
from carenow.services.booking_service import BookingManagementService


# Pydantic schemas
class BookingCreateRequest(BaseModel):
    """Fields are checked by the booking rules, which report every failure at once."""
    service_id: str = Field(..., min_length=1)
    service_name: str = Field(..., min_length=1)
    scheduled_date: date
    time_slot: str = Field(..., description="Start time as HH:MM")
    hours: float
    total_price: float
    client_address: str
    client_latitude: float = Field(..., ge=-90, le=90)
    client_longitude: float = Field(..., ge=-180, le=180)
    special_instructions: Optional[str] = Field(None, max_length=1000)
    auto_assign_partner: bool = True


class BookingCancelRequest(BaseModel):
    cancellation_reason: str = Field("", max_length=500)


class BookingResponse(BaseModel):
    id: str
    user_id: str
    partner_id: str
    service_id: str
    service_name: str
    scheduled_date: date
    time_slot: str
    hours: float
    total_price: float
    status: BookingStatus
    payment_status: PaymentStatus
    client_address: str
    client_latitude: float
    client_longitude: float
    special_instructions: Optional[str] = None
    cancellation_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# Router
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateRequest,
    actor: Actor = Depends(require_client),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Create a booking for the calling client.

    With auto_assign_partner the best available partner is assigned right
    away and the booking comes back confirmed; otherwise, or when nobody
    is free, it stays pending.
    """
    booking = await service.create_booking(
        user_id=actor.id,
        service_id=request.service_id,
        service_name=request.service_name,
        scheduled_date=request.scheduled_date,
        time_slot=request.time_slot,
        hours=request.hours,
        total_price=request.total_price,
        client_address=request.client_address,
        client_location=GeoPoint(request.client_latitude, request.client_longitude),
        special_instructions=request.special_instructions,
        auto_assign_partner=request.auto_assign_partner,
    )
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    """Visible to the owning client and the assigned partner."""
    booking = await service.get_booking(booking_id)
    if actor.id not in (booking.user_id, booking.partner_id):
        raise ForbiddenException("Not a participant of this booking")
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    actor: Actor = Depends(require_partner),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await service.accept_booking(booking_id, actor.id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_booking(
    booking_id: str,
    actor: Actor = Depends(require_partner),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await service.start_booking(booking_id, actor.id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str,
    actor: Actor = Depends(require_partner),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await service.complete_booking(booking_id, actor.id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    request: BookingCancelRequest,
    actor: Actor = Depends(require_client),
    service: BookingManagementService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await service.cancel_booking(booking_id, actor.id, request.cancellation_reason)
    return BookingResponse.model_validate(booking)
