# backend/consultbook/services/dispute_service.py
"""
Dispute Service.

Participants raise disputes against bookings; moderators resolve them.
Resolution dispatches on the dispute type:

- BOOKING disputes may approve a refund of the latest paid payment, which
  also cancels the booking.
- RESCHEDULE_REQUEST disputes carry proposed times and, when approved, move
  the booking through ``BookingService.reschedule`` with the moderator role.

Each resolution runs in one transaction together with its audit entry and
outbound notifications.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import DEFAULT_QUERY_LIMIT
from ..core.enums import NotificationKind, RoleName
from ..core.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from ..models.audit_log import AuditLog
from ..models.booking import Booking, BookingStatus
from ..models.dispute import Dispute, DisputeStatus, DisputeType
from ..models.types import now_utc
from ..repositories.factory import RepositoryFactory
from ..schemas.dispute import RescheduleMetadata
from .base import BaseService
from .booking_service import BookingService
from .notification_service import NotificationService
from .payment_service import PaymentService

logger = logging.getLogger(__name__)

DISPUTABLE_STATUSES = {
    DisputeType.BOOKING: frozenset(
        {BookingStatus.PAID, BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
    ),
    DisputeType.RESCHEDULE_REQUEST: frozenset({BookingStatus.CONFIRMED}),
}

AUDIT_DISPUTE_RESOLVE = "DISPUTE_RESOLVE"
AUDIT_DISPUTE_RESCHEDULE_RESOLVE = "DISPUTE_RESCHEDULE_RESOLVE"
REFUND_CANCELLATION_REASON = "Dispute resolved - Refund approved"


class DisputeService(BaseService):
    """
    Usage:
        service = DisputeService(db)
        dispute = service.raise_dispute(user_id, booking_id, "Professional did not attend")
        service.resolve(dispute.id, moderator_id, approved=True, refund_amount=Decimal("1500"))
    """

    def __init__(
        self,
        db: Session,
        *,
        booking_service: Optional[BookingService] = None,
        payment_service: Optional[PaymentService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_dispute_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.audit_repository = RepositoryFactory.create_audit_repository(db)
        self.notifications = notifications or NotificationService(db)
        self.booking_service = booking_service or BookingService(
            db, notifications=self.notifications
        )
        self.payment_service = payment_service or PaymentService(
            db, booking_service=self.booking_service, notifications=self.notifications
        )

    @staticmethod
    def _dispute_payload(dispute: Dispute, **extra: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "dispute_id": dispute.id,
            "booking_id": dispute.booking_id,
            "type": dispute.type,
            "status": dispute.status,
            "raised_by": dispute.user_id,
        }
        payload.update(extra)
        return payload

    def _audit(
        self,
        dispute: Dispute,
        action: str,
        resolved_by: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
    ) -> None:
        self.audit_repository.write(
            AuditLog.from_change(
                entity_type="booking",
                entity_id=dispute.booking_id,
                action=action,
                actor_id=resolved_by,
                actor_role=RoleName.MODERATOR,
                before=before,
                after={"dispute_id": dispute.id, **after},
            )
        )

    def _close(
        self, dispute: Dispute, resolved_by: str, approved: bool, note: Optional[str]
    ) -> None:
        dispute.status = (DisputeStatus.RESOLVED if approved else DisputeStatus.CLOSED).value
        dispute.resolved_by = resolved_by
        dispute.resolved_at = now_utc()
        dispute.resolution_note = note

    # ------------------------------------------------------------------
    # Raising
    # ------------------------------------------------------------------

    @BaseService.measure_operation("raise_dispute")
    def raise_dispute(
        self,
        user_id: str,
        booking_id: str,
        description: str,
        requested_refund_amount: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None,
        type: DisputeType = DisputeType.BOOKING,
    ) -> Dispute:
        """
        Open a dispute on a booking the user participates in.

        Raises:
            NotFoundException: Unknown booking
            InvalidStateException: Booking status does not allow this dispute type
            ForbiddenException: User is not a participant
        """
        dispute_type = DisputeType(type)
        self.log_operation(
            "raise_dispute", user_id=user_id, booking_id=booking_id, type=dispute_type.value
        )
        with self.transaction():
            booking = self.booking_repository.get_booking(booking_id)
            if booking is None:
                raise NotFoundException(
                    f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND"
                )
            if booking.status_enum not in DISPUTABLE_STATUSES[dispute_type]:
                if dispute_type is DisputeType.RESCHEDULE_REQUEST:
                    message = "Only confirmed bookings can be rescheduled via dispute"
                else:
                    message = "Only paid, confirmed or completed bookings can be disputed"
                raise InvalidStateException(message, current_state=booking.status)
            if not booking.is_participant(user_id):
                raise ForbiddenException("Only participants can raise a dispute")

            dispute = self.repository.create(
                booking_id=booking.id,
                user_id=user_id,
                type=dispute_type.value,
                description=description,
                status=DisputeStatus.OPEN.value,
                request_metadata=to_jsonable_python(metadata) if metadata else None,
                requested_refund_amount=requested_refund_amount,
            )

            payload = self._dispute_payload(dispute, description=description)
            self.notifications.notify(
                NotificationKind.DISPUTE_RAISED,
                settings.admin_notification_email,
                payload,
                aggregate_id=dispute.id,
                version="raised",
            )
            self.notifications.notify(
                NotificationKind.DISPUTE_RAISED,
                booking.counterpart_of(user_id),
                payload,
                aggregate_id=dispute.id,
                version="raised",
            )

        self.logger.info("Dispute %s opened on booking %s by %s", dispute.id, booking_id, user_id)
        return dispute

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @BaseService.measure_operation("resolve_dispute")
    def resolve(
        self,
        dispute_id: str,
        resolved_by: str,
        approved: bool,
        refund_amount: Optional[Decimal] = None,
        note: Optional[str] = None,
    ) -> Dispute:
        """
        Resolve an OPEN dispute, dispatching on its type.

        Raises:
            NotFoundException: Unknown dispute
            InvalidStateException: Dispute not OPEN, or reschedule metadata missing
            AmountMismatchException: Refund exceeds the amount paid
            BookingConflictException: Approved reschedule collides with a live booking
        """
        self.log_operation(
            "resolve_dispute", dispute_id=dispute_id, resolved_by=resolved_by, approved=approved
        )
        dispute = self.repository.get_by_id(dispute_id, load_relationships=False)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found", code="DISPUTE_NOT_FOUND")
        if dispute.type_enum is DisputeType.RESCHEDULE_REQUEST:
            return self._resolve_reschedule(dispute_id, resolved_by, approved, note)
        return self._resolve_refund(dispute_id, resolved_by, approved, refund_amount, note)

    def _load_open(self, dispute_id: str) -> Dispute:
        dispute = self.repository.get_for_update(dispute_id)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found", code="DISPUTE_NOT_FOUND")
        if not dispute.is_open:
            raise InvalidStateException("Dispute already resolved", current_state=dispute.status)
        return dispute

    def _resolve_refund(
        self,
        dispute_id: str,
        resolved_by: str,
        approved: bool,
        refund_amount: Optional[Decimal],
        note: Optional[str],
    ) -> Dispute:
        with self.transaction():
            dispute = self._load_open(dispute_id)
            self._close(dispute, resolved_by, approved, note)

            booking = self.booking_repository.get_booking(dispute.booking_id, for_update=True)
            refunded = None
            if approved and refund_amount and booking is not None:
                before = booking.to_dict()
                refunded = self.payment_service.refund_latest(booking.id, refund_amount)
                if refunded is not None:
                    self._cancel_for_refund(booking, resolved_by, note)
                    self._audit(
                        dispute,
                        AUDIT_DISPUTE_RESOLVE,
                        resolved_by,
                        before,
                        {
                            "approved": approved,
                            "refund_amount": str(refunded.refund_amount),
                            "refund_trx_id": refunded.refund_trx_id,
                            "payment_id": refunded.id,
                            "note": note,
                            "booking": booking.to_dict(),
                        },
                    )

            if booking is not None:
                outcome = "approved" if approved else "rejected"
                client_payload = self._dispute_payload(
                    dispute,
                    outcome=outcome,
                    refund_amount=str(refunded.refund_amount) if refunded else None,
                    note=note,
                )
                professional_payload = self._dispute_payload(dispute, outcome=outcome, note=note)
                self.notifications.notify(
                    NotificationKind.DISPUTE_RESOLVED,
                    booking.user_id,
                    client_payload,
                    aggregate_id=dispute.id,
                    version="resolved",
                )
                self.notifications.notify(
                    NotificationKind.DISPUTE_RESOLVED,
                    booking.professional_id,
                    professional_payload,
                    aggregate_id=dispute.id,
                    version="resolved",
                )

        self.logger.info(
            "Dispute %s %s by %s (refund=%s)",
            dispute_id,
            dispute.status,
            resolved_by,
            refunded.refund_trx_id if refunded else None,
        )
        return dispute

    def _cancel_for_refund(self, booking: Booking, resolved_by: str, note: Optional[str]) -> None:
        current = booking.status_enum
        if not current.can_transition_to(BookingStatus.CANCELLED):
            # Completed sessions keep their status; the refund alone is recorded.
            self.logger.info(
                "Booking %s refunded in status %s; status unchanged", booking.id, current.value
            )
            return
        reason = REFUND_CANCELLATION_REASON + (f": {note}" if note else "")
        booking.cancel(resolved_by, reason)
        self.db.flush()
        self.notifications.record_booking_event(booking, "booking.cancelled")

    def _resolve_reschedule(
        self,
        dispute_id: str,
        resolved_by: str,
        approved: bool,
        note: Optional[str],
    ) -> Dispute:
        with self.transaction():
            dispute = self._load_open(dispute_id)
            if dispute.type_enum is not DisputeType.RESCHEDULE_REQUEST:
                raise InvalidStateException("Invalid dispute type for reschedule resolution")
            try:
                proposal = RescheduleMetadata.model_validate(dispute.request_metadata or {})
            except ValidationError as exc:
                raise InvalidStateException(
                    "Dispute is missing reschedule metadata",
                    current_state=dispute.status,
                    details={"errors": exc.errors(include_url=False, include_context=False)},
                ) from exc

            current = self.booking_repository.get_booking(dispute.booking_id)
            before: Dict[str, Any] = current.to_dict() if current is not None else {}
            if approved:
                self.booking_service.reschedule(
                    dispute.booking_id,
                    proposal.new_start_time,
                    proposal.new_end_time,
                    resolved_by,
                    RoleName.MODERATOR,
                )

            self._close(dispute, resolved_by, approved, note)
            self._audit(
                dispute,
                AUDIT_DISPUTE_RESCHEDULE_RESOLVE,
                resolved_by,
                before,
                {
                    "approved": approved,
                    "new_start_time": proposal.new_start_time.isoformat(),
                    "new_end_time": proposal.new_end_time.isoformat(),
                    "note": note,
                },
            )

            booking_row = self.booking_repository.get_booking(dispute.booking_id)
            if booking_row is not None:
                payload = self._dispute_payload(
                    dispute,
                    outcome="approved" if approved else "rejected",
                    new_start_time=proposal.new_start_time.isoformat(),
                    new_end_time=proposal.new_end_time.isoformat(),
                    note=note,
                )
                for recipient in (booking_row.user_id, booking_row.professional_id):
                    self.notifications.notify(
                        NotificationKind.DISPUTE_RESOLVED,
                        recipient,
                        payload,
                        aggregate_id=dispute.id,
                        version="resolved",
                    )
        return dispute

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_user_disputes(self, user_id: str) -> List[Dispute]:
        return self.repository.list_for_user(user_id)

    def get_dispute(self, dispute_id: str, requester_id: Optional[str] = None) -> Dispute:
        """
        Raises:
            NotFoundException: Unknown dispute
            ForbiddenException: Requester neither raised it nor participates in the booking
        """
        dispute = self.repository.get_by_id(dispute_id)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found", code="DISPUTE_NOT_FOUND")
        if requester_id is not None and requester_id != dispute.user_id:
            booking = self.booking_repository.get_booking(dispute.booking_id)
            if booking is None or not booking.is_participant(requester_id):
                raise ForbiddenException("You don't have access to this dispute")
        return dispute

    def list_disputes(
        self,
        status: Optional[DisputeStatus] = None,
        *,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> List[Dispute]:
        return self.repository.list_all(status=status, limit=limit, offset=offset)
