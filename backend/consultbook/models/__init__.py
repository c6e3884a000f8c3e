# backend/consultbook/models/__init__.py
"""
SQLAlchemy models. Importing this package registers every table on
``Base.metadata``.
"""

from .audit_log import AuditLog
from .booking import ALLOWED_TRANSITIONS, Booking, BookingStatus
from .dispute import Dispute, DisputeStatus, DisputeType
from .event_outbox import EventOutbox, EventOutboxStatus
from .payment import Payment, PaymentLog, PaymentStatus
from .professional import ProfessionalProfile
from .user import User

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditLog",
    "Booking",
    "BookingStatus",
    "Dispute",
    "DisputeStatus",
    "DisputeType",
    "EventOutbox",
    "EventOutboxStatus",
    "Payment",
    "PaymentLog",
    "PaymentStatus",
    "ProfessionalProfile",
    "User",
]
