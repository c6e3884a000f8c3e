# backend/consultbook/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .auth import get_current_principal, require_dispute_resolver
from .database import get_db
from .services import (
    get_booking_service,
    get_dispute_service,
    get_payment_service,
    get_slot_service,
)

__all__ = [
    # Auth
    "get_current_principal",
    "require_dispute_resolver",
    # Database
    "get_db",
    # Services
    "get_booking_service",
    "get_dispute_service",
    "get_payment_service",
    "get_slot_service",
]
