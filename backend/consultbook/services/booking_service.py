# backend/consultbook/services/booking_service.py
"""
Booking Service.

Owns the booking state machine: creating PENDING holds, cancellation,
professional-driven status changes and rescheduling. Every check-then-write
sequence runs under the per-professional lock (Redis gate plus a row lock on
the professional profile) inside one transaction, and every externally
visible transition stages an outbox event in that same transaction.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..core.booking_lock import professional_lock
from ..core.config import settings
from ..core.constants import DEFAULT_QUERY_LIMIT
from ..core.enums import NotificationKind, RoleName
from ..core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    InvalidRangeException,
    InvalidStateException,
    NotFoundException,
    OutsideAvailabilityException,
    ValidationException,
)
from ..models.audit_log import AuditLog
from ..models.booking import Booking, BookingStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .conflict_checker import Clock, ConflictChecker
from .directory_service import DirectoryService, ProfessionalInfo
from .notification_service import NotificationService
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

PROFESSIONAL_SETTABLE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED})
GENERIC_CONFLICT_MESSAGE = "This time slot conflicts with an existing booking"
LOCK_BUSY_MESSAGE = "Another booking for this professional is being processed. Please retry."


def as_utc(value: datetime) -> datetime:
    """Normalise an instant to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookingService(BaseService):
    """
    Usage:
        service = BookingService(db)
        booking = service.create(client_id, professional_id, start, end)
    """

    def __init__(
        self,
        db: Session,
        *,
        directory: Optional[DirectoryService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        notifications: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.audit_repository = RepositoryFactory.create_audit_repository(db)
        self.directory = directory or DirectoryService(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db, clock=clock)
        self.notifications = notifications or NotificationService(db)
        self.min_duration = timedelta(minutes=settings.min_booking_minutes)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_range(self, start: datetime, end: datetime) -> None:
        if end <= start:
            raise InvalidRangeException(
                "Booking end time must be after the start time",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        if end - start < self.min_duration:
            raise InvalidRangeException(
                f"Bookings must last at least {settings.min_booking_minutes} minutes",
                details={
                    "minimum_minutes": settings.min_booking_minutes,
                    "requested_minutes": int((end - start).total_seconds() // 60),
                },
            )

    @staticmethod
    def _validate_availability(
        professional: ProfessionalInfo, start: datetime, end: datetime
    ) -> None:
        # Professionals without a published schedule accept any time.
        if professional.schedule is None:
            return
        local_start = TimezoneService.utc_to_local(start, professional.timezone)
        local_end = TimezoneService.utc_to_local(end, professional.timezone)
        if not professional.schedule.covers(local_start, local_end):
            raise OutsideAvailabilityException(
                details={
                    "timezone": professional.timezone,
                    "local_start": local_start.isoformat(),
                    "local_end": local_end.isoformat(),
                }
            )

    def lock_schedule(self, professional_id: str) -> None:
        """Serialise schedule writes for one professional until the transaction ends."""
        try:
            self.repository.lock_professional(professional_id)
        except OperationalError as exc:
            raise BookingConflictException(
                LOCK_BUSY_MESSAGE, details={"professional_id": professional_id}
            ) from exc

    def _ensure_free(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        conflicts = self.conflict_checker.find_conflicts(
            professional_id, start, end, exclude_booking_id=exclude_booking_id
        )
        if conflicts:
            raise BookingConflictException(
                GENERIC_CONFLICT_MESSAGE,
                details={
                    "professional_id": professional_id,
                    "start_time": start.isoformat(),
                    "end_time": end.isoformat(),
                    "conflicting_booking_ids": [b.id for b in conflicts],
                },
            )

    def _load(self, booking_id: str, *, for_update: bool = False) -> Booking:
        booking = self.repository.get_booking(booking_id, for_update=for_update)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def _write_audit(
        self,
        booking: Booking,
        action: str,
        *,
        actor_id: Optional[str],
        actor_role: Optional[RoleName],
        before: Optional[Dict[str, Any]],
    ) -> None:
        self.audit_repository.write(
            AuditLog.from_change(
                entity_type="booking",
                entity_id=booking.id,
                action=action,
                actor_id=actor_id,
                actor_role=actor_role,
                before=before,
                after=booking.to_dict(),
            )
        )

    def _resolve_role(self, actor_id: str) -> Optional[RoleName]:
        principal = self.directory.find_user(actor_id)
        return principal.role if principal else None

    def _notify_participants(
        self,
        booking: Booking,
        kind: NotificationKind,
        recipients: List[str],
        **extra: Any,
    ) -> None:
        version = (booking.updated_at or booking.created_at or self.conflict_checker.now()).isoformat()
        payload = NotificationService.booking_payload(booking, **extra)
        for recipient in recipients:
            self.notifications.notify(
                kind, recipient, payload, aggregate_id=booking.id, version=version
            )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_booking")
    def create(
        self,
        user_id: str,
        professional_id: str,
        start: datetime,
        end: datetime,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Place a PENDING hold on ``[start, end)`` with a professional.

        Raises:
            InvalidRangeException: End not after start, or shorter than the minimum
            NotFoundException: Unknown professional
            OutsideAvailabilityException: Range not inside an enabled schedule window
            BookingConflictException: Range overlaps a live booking
        """
        start, end = as_utc(start), as_utc(end)
        self.log_operation(
            "create_booking",
            user_id=user_id,
            professional_id=professional_id,
            start_time=start.isoformat(),
        )
        self._validate_range(start, end)
        professional = self.directory.get_professional(professional_id)
        self._validate_availability(professional, start, end)

        with professional_lock(professional_id) as acquired:
            if not acquired:
                raise BookingConflictException(LOCK_BUSY_MESSAGE)
            with self.transaction():
                self.lock_schedule(professional_id)
                self._ensure_free(professional_id, start, end)
                booking = Booking(
                    user_id=user_id,
                    professional_id=professional_id,
                    start_time=start,
                    end_time=end,
                    price=professional.session_price,
                    currency=professional.currency,
                    status=BookingStatus.PENDING.value,
                    notes=notes,
                    created_at=self.conflict_checker.now(),
                )
                try:
                    self.repository.insert_booking(booking)
                except IntegrityError as exc:
                    raise BookingConflictException(
                        GENERIC_CONFLICT_MESSAGE,
                        details={"professional_id": professional_id},
                    ) from exc
                self.notifications.record_booking_event(booking, "booking.created")

        self.logger.info(
            "Booking %s held for professional %s %s-%s",
            booking.id,
            professional_id,
            start.isoformat(),
            end.isoformat(),
        )
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel(self, booking_id: str, actor_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking on behalf of one of its participants.

        Raises:
            NotFoundException: Unknown booking
            ForbiddenException: Actor is not the client or the professional
            InvalidStateException: Booking already CANCELLED or COMPLETED
        """
        self.log_operation("cancel_booking", booking_id=booking_id, actor_id=actor_id)
        with self.transaction():
            booking = self._load(booking_id, for_update=True)
            if not booking.is_participant(actor_id):
                raise ForbiddenException("You don't have permission to cancel this booking")
            if booking.status_enum.is_terminal:
                raise InvalidStateException(
                    f"Booking cannot be cancelled - current status: {booking.status}",
                    current_state=booking.status,
                )
            before = booking.to_dict()
            booking.cancel(actor_id, reason)
            self.db.flush()
            self.notifications.record_booking_event(booking, "booking.cancelled")
            self._notify_participants(
                booking,
                NotificationKind.BOOKING_STATUS_CHANGED,
                [booking.counterpart_of(actor_id)],
                previous_status=before["status"],
            )
            self._write_audit(
                booking,
                "cancel",
                actor_id=actor_id,
                actor_role=self._resolve_role(actor_id),
                before=before,
            )
        return booking

    @BaseService.measure_operation("update_booking_status")
    def update_status(
        self, booking_id: str, new_status: BookingStatus, actor_id: str
    ) -> Booking:
        """
        Move a booking to CONFIRMED or COMPLETED; professional only.

        Raises:
            ValidationException: Target status is not settable by professionals
            NotFoundException: Unknown booking
            ForbiddenException: Actor is not the booking's professional
            InvalidStateException: Transition not allowed from the current status
        """
        new_status = BookingStatus(new_status)
        if new_status not in PROFESSIONAL_SETTABLE_STATUSES:
            raise ValidationException(
                f"Status {new_status.value} cannot be set directly",
                code="INVALID_STATUS",
            )
        self.log_operation(
            "update_booking_status",
            booking_id=booking_id,
            actor_id=actor_id,
            new_status=new_status.value,
        )
        with self.transaction():
            booking = self._load(booking_id, for_update=True)
            if actor_id != booking.professional_id:
                raise ForbiddenException("Only the professional can update booking status")
            current = booking.status_enum
            if not current.can_transition_to(new_status):
                raise InvalidStateException(
                    f"Cannot change booking from {current.value} to {new_status.value}",
                    current_state=current.value,
                )
            before = booking.to_dict()
            booking.status = new_status.value
            self.db.flush()
            self.notifications.record_booking_event(booking, "booking.status_changed")
            kind = (
                NotificationKind.BOOKING_CONFIRMED
                if new_status is BookingStatus.CONFIRMED
                else NotificationKind.BOOKING_STATUS_CHANGED
            )
            self._notify_participants(
                booking, kind, [booking.user_id], previous_status=current.value
            )
            self._write_audit(
                booking,
                "status_change",
                actor_id=actor_id,
                actor_role=RoleName.PROFESSIONAL,
                before=before,
            )
        return booking

    @BaseService.measure_operation("reschedule_booking")
    def reschedule(
        self,
        booking_id: str,
        new_start: datetime,
        new_end: datetime,
        actor_id: str,
        actor_role: RoleName,
    ) -> Booking:
        """
        Move a CONFIRMED booking to a new range.

        The booking's own current range never counts as a conflict. Roles
        with the ownership-override capability may act on bookings they do
        not participate in.

        Raises:
            NotFoundException: Unknown booking
            ForbiddenException: Actor is neither the professional nor an override role
            InvalidStateException: Booking is not CONFIRMED
            InvalidRangeException: New range inverted or too short
            BookingConflictException: New range overlaps another live booking
        """
        new_start, new_end = as_utc(new_start), as_utc(new_end)
        role = RoleName.parse(actor_role)
        self.log_operation(
            "reschedule_booking",
            booking_id=booking_id,
            actor_id=actor_id,
            actor_role=role.value,
        )
        self._validate_range(new_start, new_end)

        booking = self._load(booking_id)
        professional_id = booking.professional_id
        if actor_id != professional_id and not role.may_override_booking_ownership:
            raise ForbiddenException("Only the professional can reschedule this booking")

        with professional_lock(professional_id) as acquired:
            if not acquired:
                raise BookingConflictException(LOCK_BUSY_MESSAGE)
            with self.transaction():
                self.lock_schedule(professional_id)
                booking = self._load(booking_id, for_update=True)
                if booking.status_enum is not BookingStatus.CONFIRMED:
                    raise InvalidStateException(
                        "Only confirmed bookings can be rescheduled",
                        current_state=booking.status,
                    )
                self._ensure_free(
                    professional_id, new_start, new_end, exclude_booking_id=booking.id
                )
                before = booking.to_dict()
                booking.start_time = new_start
                booking.end_time = new_end
                try:
                    self.db.flush()
                except IntegrityError as exc:
                    raise BookingConflictException(
                        GENERIC_CONFLICT_MESSAGE,
                        details={"professional_id": professional_id},
                    ) from exc
                self.notifications.record_booking_event(booking, "booking.rescheduled")
                self._notify_participants(
                    booking,
                    NotificationKind.BOOKING_RESCHEDULED,
                    [booking.user_id, booking.professional_id],
                    previous_start_time=before["start_time"],
                    previous_end_time=before["end_time"],
                )
                self._write_audit(
                    booking,
                    "reschedule",
                    actor_id=actor_id,
                    actor_role=role,
                    before=before,
                )
        return booking

    def mark_paid_from_gateway(self, booking: Booking) -> bool:
        """
        Flip a PENDING booking to PAID after a verified gateway callback.

        Only reconciliation calls this. Returns True when the status changed;
        bookings already PAID, or in a status PAID cannot follow, are left
        untouched.

        Raises:
            BookingConflictException: The hold lapsed and its range now
                overlaps another live booking
        """
        current = booking.status_enum
        if current is BookingStatus.PAID:
            return False
        if not current.can_transition_to(BookingStatus.PAID):
            self.logger.warning(
                "Payment confirmed for booking %s in status %s; status left unchanged",
                booking.id,
                current.value,
            )
            return False
        if current is BookingStatus.PENDING:
            self._ensure_free(
                booking.professional_id,
                booking.start_time,
                booking.end_time,
                exclude_booking_id=booking.id,
            )
        booking.status = BookingStatus.PAID.value
        self.db.flush()
        self.notifications.record_booking_event(booking, "booking.paid")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_booking_for_user(self, booking_id: str, user_id: str) -> Booking:
        """
        Raises:
            NotFoundException: Unknown booking
            ForbiddenException: User is not a participant
        """
        booking = self._load(booking_id)
        if not booking.is_participant(user_id):
            raise ForbiddenException("You don't have access to this booking")
        return booking

    @BaseService.measure_operation("list_bookings")
    def list_bookings_for_user(
        self,
        user_id: str,
        status: Optional[BookingStatus] = None,
        *,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> List[Booking]:
        return self.repository.list_for_user(user_id, status=status, limit=limit, offset=offset)
