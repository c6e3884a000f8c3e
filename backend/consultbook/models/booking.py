# backend/consultbook/models/booking.py
"""
Booking model for the consultation marketplace.

A booking reserves ``[start_time, end_time)`` (UTC instants) with a
professional. It starts life as a PENDING hold and is only ever mutated
through the booking, payment and dispute services. Rows are never deleted.
"""

from datetime import timedelta
from enum import Enum
import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Hold awaiting payment
    PAID = "PAID"  # Gateway confirmed payment
    CONFIRMED = "CONFIRMED"  # Accepted by the professional
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def blocking(cls) -> FrozenSet["BookingStatus"]:
        """Statuses that block their range regardless of age."""
        return frozenset({cls.CONFIRMED, cls.PAID, cls.COMPLETED})

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.PAID, BookingStatus.CONFIRMED, BookingStatus.CANCELLED}
    ),
    BookingStatus.PAID: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class Booking(Base):
    """
    Reservation of a professional's time by a client.

    Price and currency are snapshotted from the professional profile at
    creation time so later price changes never alter an existing booking.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    professional_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BDT")

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    notes = Column(Text, nullable=True)

    # Payment attempts that re-armed an expired hold
    hold_refresh_count = Column(Integer, nullable=False, default=0)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=now_utc)

    client = relationship("User", foreign_keys=[user_id])
    professional = relationship("User", foreign_keys=[professional_id])
    payments = relationship(
        "Payment",
        back_populates="booking",
        order_by="Payment.created_at",
        cascade="all, delete-orphan",
    )
    disputes = relationship("Dispute", back_populates="booking")

    __table_args__ = (
        Index("ix_bookings_professional_range", "professional_id", "start_time", "end_time"),
        CheckConstraint("end_time > start_time", name="ck_bookings_time_order"),
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'CONFIRMED', 'COMPLETED', 'CANCELLED')",
            name="ck_bookings_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: {self.start_time}-{self.end_time} "
            f"professional={self.professional_id} status={self.status}>"
        )

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.user_id, self.professional_id)

    def counterpart_of(self, user_id: str) -> str:
        """Return the other participant's id."""
        return self.professional_id if user_id == self.user_id else self.user_id

    def cancel(self, cancelled_by_id: str, reason: Optional[str] = None) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = now_utc()
        self.cancelled_by = cancelled_by_id
        self.cancellation_reason = reason

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "professional_id": self.professional_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "price": str(self.price) if self.price is not None else None,
            "currency": self.currency,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
        }
