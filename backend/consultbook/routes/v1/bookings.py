# backend/consultbook/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    GET / - Bookings where the caller is client or professional
    POST / - Place a PENDING hold
    GET /{booking_id} - Booking details (participants only)
    POST /{booking_id}/cancel - Cancel a booking
    PATCH /{booking_id}/status - Confirm or complete (professional only)
    POST /{booking_id}/reschedule - Move a confirmed booking
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...api.dependencies import get_booking_service, get_current_principal
from ...core.constants import DEFAULT_QUERY_LIMIT
from ...models.booking import BookingStatus
from ...schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingReschedule,
    BookingResponse,
    BookingStatusUpdate,
)
from ...services.booking_service import BookingService
from ...services.directory_service import Principal

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=DEFAULT_QUERY_LIMIT),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    bookings = await asyncio.to_thread(
        booking_service.list_bookings_for_user,
        principal.id,
        status_filter,
        limit=limit,
        offset=offset,
    )
    items = [BookingResponse.model_validate(b) for b in bookings]
    return BookingListResponse(items=items, total=len(items))


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid time range"},
        404: {"description": "Professional not found"},
        409: {"description": "Time slot not available"},
        422: {"description": "Outside the professional's availability"},
    },
)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Place a PENDING hold; it blocks the range for the hold window."""
    booking = await asyncio.to_thread(
        booking_service.create,
        principal.id,
        booking_data.professional_id,
        booking_data.start_time,
        booking_data.end_time,
        booking_data.notes,
    )
    return BookingResponse.model_validate(booking)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={403: {"description": "Not a participant"}, 404: {"description": "Booking not found"}},
)
async def get_booking(
    booking_id: str = Path(..., description="Booking ULID"),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await asyncio.to_thread(
        booking_service.get_booking_for_user, booking_id, principal.id
    )
    return BookingResponse.model_validate(booking)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID"),
    cancel_data: BookingCancel = Body(default_factory=BookingCancel),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Cancel a booking."""
    booking = await asyncio.to_thread(
        booking_service.cancel, booking_id, principal.id, cancel_data.reason
    )
    return BookingResponse.model_validate(booking)


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    responses={403: {"description": "Not the professional"}, 422: {"description": "Transition not allowed"}},
)
async def update_booking_status(
    booking_id: str = Path(..., description="Booking ULID"),
    update: BookingStatusUpdate = Body(...),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await asyncio.to_thread(
        booking_service.update_status, booking_id, update.status, principal.id
    )
    return BookingResponse.model_validate(booking)


@router.post(
    "/{booking_id}/reschedule",
    response_model=BookingResponse,
    responses={409: {"description": "New time conflicts with another booking"}},
)
async def reschedule_booking(
    booking_id: str = Path(..., description="Booking ULID"),
    payload: BookingReschedule = Body(...),
    principal: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await asyncio.to_thread(
        booking_service.reschedule,
        booking_id,
        payload.start_time,
        payload.end_time,
        principal.id,
        principal.role,
    )
    return BookingResponse.model_validate(booking)
