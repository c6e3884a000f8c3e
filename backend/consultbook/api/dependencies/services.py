# backend/consultbook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets services bound to its own session.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.booking_service import BookingService
from ...services.dispute_service import DisputeService
from ...services.payment_service import PaymentService
from ...services.slot_service import SlotService
from .database import get_db

logger = logging.getLogger(__name__)


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    return SlotService(db)


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


def get_dispute_service(db: Session = Depends(get_db)) -> DisputeService:
    return DisputeService(db)
