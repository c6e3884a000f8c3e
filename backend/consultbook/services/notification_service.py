# backend/consultbook/services/notification_service.py
"""
Notification Service.

Writes outbound events to the transactional outbox. Rows are staged in the
caller's transaction, so a notification exists if and only if the state
change that caused it committed. Delivery happens later in the
``outbox.deliver_event`` task and can never roll a transition back.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.enums import NotificationKind
from ..models.booking import Booking
from ..models.event_outbox import EventOutbox
from ..models.types import now_utc
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None


class NotificationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.outbox_repository = RepositoryFactory.create_event_outbox_repository(db)

    def notify(
        self,
        kind: NotificationKind,
        recipient: str,
        payload: Dict[str, Any],
        *,
        aggregate_id: str,
        version: Optional[str] = None,
    ) -> EventOutbox:
        """
        Queue a message for ``recipient`` (a user id or an email address).

        ``version`` distinguishes repeated notifications about the same
        aggregate; re-queuing the same version is a no-op.
        """
        version = version or now_utc().isoformat()
        key = f"notify:{kind.value}:{aggregate_id}:{recipient}:{version}"
        return self.outbox_repository.enqueue(
            event_type=kind.value,
            aggregate_id=aggregate_id,
            payload={"recipient": recipient, "kind": kind.value, **payload},
            idempotency_key=key,
        )

    def record_booking_event(self, booking: Booking, event_type: str) -> EventOutbox:
        """Persist a booking domain event inside the current transaction."""
        self.db.flush()  # timestamps must be populated before computing identity
        version = self._booking_event_version(booking, event_type)
        return self.outbox_repository.enqueue(
            event_type=event_type,
            aggregate_id=booking.id,
            payload=self.booking_payload(booking, event_type=event_type, version=version),
            idempotency_key=f"booking:{booking.id}:{event_type}:{version}",
        )

    @staticmethod
    def _booking_event_version(booking: Booking, event_type: str) -> str:
        if event_type == "booking.cancelled" and booking.cancelled_at:
            timestamp = booking.cancelled_at
        elif event_type == "booking.created":
            timestamp = booking.created_at or now_utc()
        else:
            timestamp = booking.updated_at or now_utc()
        return _iso(timestamp) or now_utc().isoformat()

    @staticmethod
    def booking_payload(booking: Booking, **extra: Any) -> Dict[str, Any]:
        """JSON-safe snapshot of a booking for outbox payloads."""
        payload: Dict[str, Any] = {
            "booking_id": booking.id,
            "status": booking.status,
            "user_id": booking.user_id,
            "professional_id": booking.professional_id,
            "start_time": _iso(booking.start_time),
            "end_time": _iso(booking.end_time),
            "price": str(booking.price) if booking.price is not None else None,
            "currency": booking.currency,
            "cancellation_reason": booking.cancellation_reason,
        }
        payload.update(extra)
        return payload
