# backend/consultbook/services/notification_provider.py
"""
Notification provider used by the outbox dispatcher.

The default ``console`` provider writes each message to the log. Email
delivery is an external collaborator; plugging one in means implementing
``send`` with the same signature.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)


class NotificationProviderTemporaryError(RuntimeError):
    """Transient provider failure; the dispatcher retries with backoff."""


@dataclass(slots=True)
class NotificationDispatchResult:
    """Metadata describing a provider send."""

    idempotency_key: str
    event_type: str
    recipient: Optional[str]


class NotificationProvider:
    """
    Usage:
        provider = NotificationProvider()
        provider.send(event_type="booking.paid", payload={...}, idempotency_key="...")
    """

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = (name or settings.notification_provider).strip().lower()
        if self.name != "console":
            raise ValueError(f"Unsupported notification provider: {self.name}")

    def send(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> NotificationDispatchResult:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")

        payload = payload or {}
        recipient = payload.get("recipient")
        logger.info(
            "Dispatching notification %s to=%s key=%s payload=%s",
            event_type,
            recipient or "-",
            idempotency_key,
            json.dumps(payload, sort_keys=True, default=str)[:500],
        )
        return NotificationDispatchResult(
            idempotency_key=idempotency_key,
            event_type=event_type,
            recipient=recipient,
        )
