# backend/consultbook/repositories/payment_repository.py
"""
Payment Repository.

Payment attempts and their append-only gateway log. The log is insert-only:
there is deliberately no update or delete helper for ``PaymentLog``.
"""

import logging
from typing import Any, Dict, Optional, cast

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import PaymentLogAction, PaymentMethod
from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentLog, PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)
        self.logger = logging.getLogger(__name__)

    def get_by_transaction_id(
        self, transaction_id: str, *, for_update: bool = False
    ) -> Optional[Payment]:
        """Most recent payment carrying ``transaction_id``."""
        try:
            stmt = (
                select(Payment)
                .where(Payment.transaction_id == transaction_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .limit(1)
            )
            if for_update:
                stmt = stmt.with_for_update()
            return cast(Optional[Payment], self.db.execute(stmt).scalar_one_or_none())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding payment by transaction {transaction_id}: {str(e)}")
            raise RepositoryException(f"Failed to find payment: {str(e)}")

    def get_latest_for_booking(
        self,
        booking_id: str,
        *,
        status: Optional[PaymentStatus] = None,
        method: Optional[PaymentMethod] = None,
        for_update: bool = False,
    ) -> Optional[Payment]:
        """Latest payment attempt for a booking, optionally filtered by status or gateway."""
        try:
            stmt = select(Payment).where(Payment.booking_id == booking_id)
            if status is not None:
                stmt = stmt.where(Payment.status == status.value)
            if method is not None:
                stmt = stmt.where(Payment.method == method.value)
            stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(1)
            if for_update:
                stmt = stmt.with_for_update()
            return cast(Optional[Payment], self.db.execute(stmt).scalar_one_or_none())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load payment: {str(e)}")

    def append_log(
        self,
        payment_id: str,
        action: PaymentLogAction,
        request: Optional[Dict[str, Any]],
        response: Optional[Dict[str, Any]],
    ) -> PaymentLog:
        try:
            entry = PaymentLog(
                payment_id=payment_id,
                action=action.value,
                request=request,
                response=response,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Error appending payment log for {payment_id}: {str(e)}")
            raise RepositoryException(f"Failed to append payment log: {str(e)}")
