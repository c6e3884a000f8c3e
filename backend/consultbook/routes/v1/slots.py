# backend/consultbook/routes/v1/slots.py
"""
Slot availability routes - API v1

Endpoints:
    GET /professionals/{professional_id}/slots?date=YYYY-MM-DD - Open slots on a civil date
"""

import asyncio
from datetime import date
import logging

from fastapi import APIRouter, Depends, Path, Query

from ...api.dependencies import get_slot_service
from ...schemas.booking import AvailableSlotsResponse, SlotResponse
from ...services.slot_service import SlotService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slots-v1"])


@router.get(
    "/{professional_id}/slots",
    response_model=AvailableSlotsResponse,
    responses={404: {"description": "Professional not found"}},
)
async def list_available_slots(
    professional_id: str = Path(..., description="Professional user id"),
    target_date: date = Query(..., alias="date", description="Civil date in the professional's timezone"),
    slot_service: SlotService = Depends(get_slot_service),
) -> AvailableSlotsResponse:
    """Slots not overlapping a live booking, ordered by start."""

    def _load() -> AvailableSlotsResponse:
        professional = slot_service.directory.get_professional(professional_id)
        slots = [
            SlotResponse(start_time=slot.start, end_time=slot.end)
            for slot in slot_service.list_available_slots(professional_id, target_date)
        ]
        return AvailableSlotsResponse(
            professional_id=professional_id,
            date=target_date,
            timezone=professional.timezone,
            session_price=professional.session_price,
            slots=slots,
        )

    return await asyncio.to_thread(_load)
