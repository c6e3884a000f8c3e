# backend/consultbook/repositories/factory.py
"""
Repository Factory.

Provides centralized creation of repository instances so services can be
built around a single passed-in ``Session``.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_repository import AuditRepository
    from .booking_repository import BookingRepository
    from .conflict_checker_repository import ConflictCheckerRepository
    from .dispute_repository import DisputeRepository
    from .event_outbox_repository import EventOutboxRepository
    from .payment_repository import PaymentRepository
    from .professional_repository import ProfessionalProfileRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_base_repository(db: Session, model: Any) -> BaseRepository[Any]:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_conflict_checker_repository(db: Session) -> "ConflictCheckerRepository":
        """Create repository for conflict checking queries."""
        from .conflict_checker_repository import ConflictCheckerRepository

        return ConflictCheckerRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_dispute_repository(db: Session) -> "DisputeRepository":
        from .dispute_repository import DisputeRepository

        return DisputeRepository(db)

    @staticmethod
    def create_professional_profile_repository(db: Session) -> "ProfessionalProfileRepository":
        from .professional_repository import ProfessionalProfileRepository

        return ProfessionalProfileRepository(db)

    @staticmethod
    def create_audit_repository(db: Session) -> "AuditRepository":
        from .audit_repository import AuditRepository

        return AuditRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
