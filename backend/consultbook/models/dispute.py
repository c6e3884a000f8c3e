# backend/consultbook/models/dispute.py
"""
Disputes raised by booking participants.

``request_metadata`` holds the type-specific payload (for reschedule requests
the proposed ``newStartTime``/``newEndTime``). It is stored as submitted and
decoded into a typed model only when the dispute is resolved.
"""

from enum import Enum

from sqlalchemy import Column, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import JSONDocument, UTCDateTime, now_utc


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class DisputeType(str, Enum):
    BOOKING = "BOOKING"
    RESCHEDULE_REQUEST = "RESCHEDULE_REQUEST"


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String(30), nullable=False, default=DisputeType.BOOKING.value)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=DisputeStatus.OPEN.value, index=True)
    request_metadata = Column("metadata", JSONDocument(), nullable=True)
    requested_refund_amount = Column(Numeric(10, 2), nullable=True)

    resolution_note = Column(Text, nullable=True)
    resolved_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    resolved_at = Column(UTCDateTime(), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=now_utc)

    booking = relationship("Booking", back_populates="disputes")
    complainant = relationship("User", foreign_keys=[user_id])

    @property
    def type_enum(self) -> DisputeType:
        return DisputeType(self.type)

    @property
    def is_open(self) -> bool:
        return self.status == DisputeStatus.OPEN.value

    def __repr__(self) -> str:
        return f"<Dispute {self.id} booking={self.booking_id} {self.type} {self.status}>"
