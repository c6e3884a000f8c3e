# backend/consultbook/repositories/booking_repository.py
"""
Booking Repository.

Data access for booking rows plus the per-professional row lock that
serialises check-then-insert sequences.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy import or_, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.constants import DEFAULT_QUERY_LIMIT
from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.professional import ProfessionalProfile
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.client), joinedload(Booking.professional))

    def get_booking(self, booking_id: str, *, for_update: bool = False) -> Optional[Booking]:
        """Load a booking, optionally taking a row lock (ignored on SQLite)."""
        try:
            stmt = select(Booking).where(Booking.id == booking_id)
            if for_update:
                stmt = stmt.with_for_update()
            return cast(Optional[Booking], self.db.execute(stmt).scalar_one_or_none())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def insert_booking(self, booking: Booking) -> Booking:
        """
        Stage and flush a new booking.

        ``IntegrityError`` is deliberately not wrapped: the storage-level
        overlap constraint surfaces through it and the service maps it to a
        booking conflict.
        """
        self.db.add(booking)
        self.db.flush()
        return booking

    def lock_professional(self, professional_id: str) -> Optional[ProfessionalProfile]:
        """
        Take ``SELECT ... FOR UPDATE`` on the professional's profile row.

        Concurrent writers for the same professional queue here until the
        holding transaction ends, which makes conflict check and insert atomic
        per professional. SQLite has no row locks, so there a no-op write takes
        the database write lock instead.

        ``OperationalError`` (lock wait gave up) is not wrapped; the service
        reports it as a busy schedule.
        """
        try:
            if self.dialect_name == "sqlite":
                self.db.execute(
                    update(ProfessionalProfile)
                    .where(ProfessionalProfile.user_id == professional_id)
                    .values(updated_at=ProfessionalProfile.updated_at)
                    .execution_options(synchronize_session=False)
                )
            stmt = (
                select(ProfessionalProfile)
                .where(ProfessionalProfile.user_id == professional_id)
                .with_for_update()
            )
            return cast(Optional[ProfessionalProfile], self.db.execute(stmt).scalar_one_or_none())
        except OperationalError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking professional {professional_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock professional: {str(e)}")

    def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[BookingStatus] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> List[Booking]:
        """Bookings where the user is the client or the professional, newest start first."""
        try:
            query = self.db.query(Booking).filter(
                or_(Booking.user_id == user_id, Booking.professional_id == user_id)
            )
            if status is not None:
                query = query.filter(Booking.status == status.value)
            return cast(
                List[Booking],
                query.order_by(Booking.start_time.desc()).offset(offset).limit(limit).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")
