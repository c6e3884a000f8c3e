# backend/consultbook/schemas/booking.py
"""
Booking request/response schemas.

All instants cross the API as ISO-8601 strings with an explicit offset and
are stored as UTC.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, ValidationInfo, field_validator

from ..core.constants import MAX_NOTES_LENGTH, MAX_REASON_LENGTH
from ..models.booking import BookingStatus
from .base import Money, StandardizedModel, StrictRequestModel, require_aware


class _TimeRangeRequest(StrictRequestModel):
    start_time: datetime = Field(..., description="Start instant (ISO-8601 with offset)")
    end_time: datetime = Field(..., description="End instant (ISO-8601 with offset)")

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, v: datetime, info: ValidationInfo) -> datetime:
        return require_aware(v, info.field_name)


class BookingCreate(_TimeRangeRequest):
    """Request a PENDING hold on a professional's time."""

    professional_id: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class BookingReschedule(_TimeRangeRequest):
    pass


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class BookingStatusUpdate(StrictRequestModel):
    """Professionals may confirm or complete a booking."""

    status: BookingStatus

    @field_validator("status")
    @classmethod
    def _professional_targets(cls, v: BookingStatus) -> BookingStatus:
        if v not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            raise ValueError("status must be CONFIRMED or COMPLETED")
        return v


class BookingResponse(StandardizedModel):
    id: str
    user_id: str
    professional_id: str
    start_time: datetime
    end_time: datetime
    price: Money
    currency: str
    status: BookingStatus
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class BookingListResponse(StandardizedModel):
    items: List[BookingResponse]
    total: int


class SlotResponse(StandardizedModel):
    start_time: datetime
    end_time: datetime


class AvailableSlotsResponse(StandardizedModel):
    professional_id: str
    date: date
    timezone: str
    session_price: Money
    slots: List[SlotResponse]


__all__ = [
    "AvailableSlotsResponse",
    "BookingCancel",
    "BookingCreate",
    "BookingListResponse",
    "BookingReschedule",
    "BookingResponse",
    "BookingStatusUpdate",
    "SlotResponse",
]
