# backend/consultbook/services/conflict_checker.py
"""
Conflict Checker Service.

Single source of truth for "does this range collide with a live booking".
Used by booking creation, rescheduling, slot listing and the stale-hold
revalidation in payment initiation.

A booking is live when it is CONFIRMED, PAID or COMPLETED, or when it is
PENDING and was created no longer than the hold window ago. Liveness is
always computed against the current clock; nothing caches it and no
background job expires holds.
"""

from datetime import datetime, timedelta
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.booking import Booking, BookingStatus
from ..models.types import now_utc
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ConflictChecker(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        hold_minutes: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_conflict_checker_repository(db)
        self.hold = timedelta(minutes=hold_minutes or settings.booking_hold_minutes)
        self._clock: Clock = clock or now_utc

    def now(self) -> datetime:
        return self._clock()

    def is_live(self, booking: Booking, now: Optional[datetime] = None) -> bool:
        """Python-side form of the live-booking predicate."""
        status = BookingStatus(booking.status)
        if status in BookingStatus.blocking():
            return True
        if status is BookingStatus.PENDING and booking.created_at is not None:
            reference = now or self.now()
            return reference - booking.created_at <= self.hold
        return False

    def is_hold_expired(self, booking: Booking, now: Optional[datetime] = None) -> bool:
        """PENDING booking whose hold window has elapsed."""
        return booking.status == BookingStatus.PENDING.value and not self.is_live(booking, now)

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Booking]:
        """
        Live bookings overlapping the half-open range ``[start, end)``.

        Args:
            professional_id: Professional whose calendar is checked
            start: Candidate start (UTC)
            end: Candidate end (UTC)
            exclude_booking_id: Booking to ignore (the one being moved)
            now: Reference instant for hold expiry, defaults to the clock

        Returns:
            Conflicting bookings, ordered by start time
        """
        reference = now or self.now()
        conflicts = self.repository.get_live_overlapping(
            professional_id,
            start,
            end,
            now=reference,
            hold=self.hold,
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            self.logger.debug(
                "Range %s-%s for professional %s blocked by %s",
                start.isoformat(),
                end.isoformat(),
                professional_id,
                [b.id for b in conflicts],
            )
        return conflicts

    def has_conflict(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        return bool(
            self.find_conflicts(
                professional_id, start, end, exclude_booking_id=exclude_booking_id, now=now
            )
        )
