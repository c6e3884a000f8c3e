# backend/consultbook/schemas/dispute.py
"""Dispute request/response schemas and typed dispute metadata."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.constants import MAX_DISPUTE_DESCRIPTION_LENGTH, MAX_NOTES_LENGTH
from ..models.dispute import DisputeStatus, DisputeType
from .base import Money, StandardizedModel, StrictRequestModel, require_aware


class RescheduleMetadata(BaseModel):
    """Proposed times carried by a RESCHEDULE_REQUEST dispute."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    new_start_time: datetime = Field(..., alias="newStartTime")
    new_end_time: datetime = Field(..., alias="newEndTime")

    @field_validator("new_start_time", "new_end_time")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return require_aware(v, "reschedule time")


class DisputeCreate(StrictRequestModel):
    booking_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=MAX_DISPUTE_DESCRIPTION_LENGTH)
    type: DisputeType = DisputeType.BOOKING
    requested_refund_amount: Optional[Money] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("description")
    @classmethod
    def _strip(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("description must not be blank")
        return stripped

    @field_validator("requested_refund_amount")
    @classmethod
    def _non_negative(cls, v: Optional[Money]) -> Optional[Money]:
        if v is not None and v < 0:
            raise ValueError("requested_refund_amount must not be negative")
        return v


class DisputeResolve(StrictRequestModel):
    approved: bool
    refund_amount: Optional[Money] = None
    note: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @model_validator(mode="after")
    def _positive_refund(self) -> "DisputeResolve":
        if self.refund_amount is not None and self.refund_amount <= 0:
            raise ValueError("refund_amount must be positive")
        return self


class DisputeResponse(StandardizedModel):
    id: str
    booking_id: str
    user_id: str
    type: DisputeType
    description: str
    status: DisputeStatus
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias="request_metadata", serialization_alias="metadata"
    )
    requested_refund_amount: Optional[Money] = None
    resolution_note: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class DisputeListResponse(StandardizedModel):
    items: List[DisputeResponse]
    total: int
