# backend/consultbook/models/event_outbox.py
"""
Event outbox persistence model.

Notifications are written here in the same transaction as the state change
that caused them, then delivered by the ``outbox.deliver_event`` task.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import JSONDocument, UTCDateTime, now_utc


class EventOutboxStatus(str, Enum):
    """Lifecycle states for an outbox event."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    """Transactional outbox entry pending delivery."""

    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_id = Column(String(64), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(JSONDocument(), nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(UTCDateTime(), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=now_utc)

    __table_args__ = (UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),)

    def mark_pending(self, next_attempt_at: datetime, attempt_count: int) -> None:
        """Update row state for another delivery attempt."""
        self.status = EventOutboxStatus.PENDING.value
        self.attempt_count = attempt_count
        self.next_attempt_at = next_attempt_at

    def mark_sent(self, attempt_count: int) -> None:
        self.status = EventOutboxStatus.SENT.value
        self.attempt_count = attempt_count
        self.next_attempt_at = now_utc()

    def mark_failed(self, attempt_count: int, error: str | None = None) -> None:
        """Mark the event as permanently failed."""
        self.status = EventOutboxStatus.FAILED.value
        self.attempt_count = attempt_count
        if error:
            self.last_error = error[:1000]
