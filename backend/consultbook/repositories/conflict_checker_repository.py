# backend/consultbook/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository.

Overlap queries over booking rows. Liveness is evaluated in SQL against a
caller-supplied ``now`` so expired holds drop out without any sweeper.
"""

from datetime import datetime, timedelta
import logging
from typing import List, Optional, cast

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def live_booking_clause(now: datetime, hold: timedelta) -> ColumnElement[bool]:
    """SQL form of the live-booking predicate."""
    return or_(
        Booking.status.in_([status.value for status in BookingStatus.blocking()]),
        and_(
            Booking.status == BookingStatus.PENDING.value,
            Booking.created_at >= now - hold,
        ),
    )


class ConflictCheckerRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_live_overlapping(
        self,
        professional_id: str,
        start: datetime,
        end: datetime,
        *,
        now: datetime,
        hold: timedelta,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Live bookings whose ``[start_time, end_time)`` overlaps ``[start, end)``.

        Args:
            professional_id: The professional to check
            start: Candidate start (UTC)
            end: Candidate end (UTC)
            now: Reference instant for hold expiry
            hold: Hold window length
            exclude_booking_id: Booking being moved, ignored by the check

        Returns:
            Blocking bookings ordered by start time
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.professional_id == professional_id,
                Booking.start_time < end,
                Booking.end_time > start,
                live_booking_clause(now, hold),
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.order_by(Booking.start_time).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get conflict bookings: {str(e)}")
