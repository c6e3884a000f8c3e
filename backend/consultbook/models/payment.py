# backend/consultbook/models/payment.py
"""
Payment attempts against bookings and their append-only gateway log.

A booking may accumulate several attempts; the most recent one is the
booking's payment. Rows change status only through the payment and dispute
services.
"""

from enum import Enum

from sqlalchemy import Column, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import PaymentLogAction
from ..database import Base
from .types import JSONDocument, UTCDateTime, now_utc


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_settled(self) -> bool:
        """Settled payments never move back to PENDING or FAILED."""
        return self in (PaymentStatus.PAID, PaymentStatus.REFUNDED)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BDT")
    method = Column(String(20), nullable=False)
    transaction_id = Column(String(128), nullable=False, index=True)
    payment_url = Column(Text, nullable=True)
    payer_number = Column(String(32), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_trx_id = Column(String(64), nullable=True)
    invoice_url = Column(Text, nullable=True)

    paid_at = Column(UTCDateTime(), nullable=True)
    refunded_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=now_utc)

    booking = relationship("Booking", back_populates="payments")
    logs = relationship(
        "PaymentLog",
        back_populates="payment",
        order_by="PaymentLog.created_at",
        cascade="all, delete-orphan",
    )

    @property
    def status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    def __repr__(self) -> str:
        return f"<Payment {self.id} booking={self.booking_id} {self.method} {self.status}>"


class PaymentLog(Base):
    """Write-once forensic record of a gateway exchange."""

    __tablename__ = "payment_logs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_id = Column(String(26), ForeignKey("payments.id"), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    request = Column(JSONDocument(), nullable=True)
    response = Column(JSONDocument(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())

    payment = relationship("Payment", back_populates="logs")

    __table_args__ = (Index("ix_payment_logs_payment_action", "payment_id", "action"),)

    @property
    def action_enum(self) -> PaymentLogAction:
        return PaymentLogAction(self.action)
