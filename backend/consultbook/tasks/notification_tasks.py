# backend/consultbook/tasks/notification_tasks.py
"""
Celery tasks for dispatching notification outbox events.

Implements a two-step workflow:
1. `outbox.dispatch_pending` periodically enqueues delivery tasks.
2. `outbox.deliver_event` performs delivery with retries and backoff.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import monotonic
from typing import Any, Callable, Iterator, Optional

from celery.app.task import Task
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..monitoring.prometheus_metrics import PrometheusMetrics
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..services.notification_provider import NotificationProvider
from .celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


class DeliveryFailed(RuntimeError):
    """Raised when an outbox event could not be delivered on this attempt."""

    def __init__(self, message: str, *, backoff: int, terminal: bool):
        super().__init__(message)
        self.backoff = backoff
        self.terminal = terminal


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@contextmanager
def _session_scope(session_factory: Callable[[], Session] = SessionLocal) -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def deliver_outbox_event(
    session: Session,
    event_id: str,
    provider: Optional[NotificationProvider] = None,
) -> Optional[str]:
    """
    Deliver one outbox event using ``session``.

    Returns the event id when sent, ``None`` when the row is missing or
    already settled. Raises ``DeliveryFailed`` after recording the failure.
    """
    provider = provider or NotificationProvider()
    repo = EventOutboxRepository(session)
    event = repo.get_by_id(event_id, for_update=True)
    if event is None:
        logger.warning("Outbox event %s missing; skipping", event_id)
        return None
    if event.status != "PENDING":
        logger.info("Outbox event %s already %s; skipping", event_id, event.status)
        return None

    attempt_number = event.attempt_count + 1
    PrometheusMetrics.record_notification_attempt(event.event_type)
    start = monotonic()
    try:
        provider.send(
            event_type=event.event_type,
            payload=event.payload,
            idempotency_key=event.idempotency_key,
        )
    except Exception as exc:
        PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
        backoff = _next_backoff(attempt_number)
        terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
        repo.mark_failed(
            event.id,
            attempt_count=attempt_number,
            backoff_seconds=backoff,
            error=str(exc),
            terminal=terminal,
        )
        session.commit()
        if terminal:
            PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
            logger.error("Outbox event %s failed after %s attempts", event.id, attempt_number)
        raise DeliveryFailed(str(exc), backoff=backoff, terminal=terminal) from exc

    PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
    repo.mark_sent(event.id, attempt_number)
    session.commit()
    PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
    logger.info(
        "Delivered outbox event %s type=%s attempts=%s",
        event.id,
        event.event_type,
        attempt_number,
    )
    return str(event.id)


@celery_app.task(name="outbox.dispatch_pending", max_retries=0, queue="notifications")
def dispatch_pending() -> int:
    """
    Fetch pending outbox events and enqueue delivery tasks.

    Returns the number of events scheduled.
    """
    with _session_scope() as session:
        pending = EventOutboxRepository(session).fetch_pending(limit=200)
        for event in pending:
            deliver_event.apply_async((event.id,), queue="notifications")
        scheduled = len(pending)
        if scheduled:
            logger.info("Scheduled %s outbox events for delivery", scheduled)
        return scheduled


@celery_app.task(
    name="outbox.deliver_event",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    default_retry_delay=30,
    queue="notifications",
)
def deliver_event(self: "Task[Any, Any]", event_id: str) -> Optional[str]:
    """Deliver a single outbox event."""
    session = SessionLocal()
    try:
        return deliver_outbox_event(session, event_id)
    except DeliveryFailed as exc:
        if exc.terminal:
            raise
        logger.warning("Retrying outbox event %s backoff=%ss", event_id, exc.backoff)
        raise self.retry(countdown=exc.backoff, exc=exc)
    finally:
        session.close()
