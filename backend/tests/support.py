"""Shared constants and doubles for the test suite."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List

from consultbook.core.enums import PaymentMethod
from consultbook.integrations.gateways import GatewayResult, PayerInfo
from consultbook.models.event_outbox import EventOutbox

# Monday 2025-03-03; Asia/Dhaka is UTC+6 all year
MONDAY = datetime(2025, 3, 3, tzinfo=timezone.utc).date()
NINE_LOCAL = datetime(2025, 3, 3, 3, 0, tzinfo=timezone.utc)
TEN_LOCAL = NINE_LOCAL + timedelta(hours=1)
ELEVEN_LOCAL = NINE_LOCAL + timedelta(hours=2)
SESSION_PRICE = Decimal("1500.00")
MONDAY_MORNING = {"Monday": {"enabled": True, "slots": [{"start": "09:00", "end": "12:00"}]}}


class FixedClock:
    """Clock whose value only changes when a test moves it."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingGateway:
    """Gateway double returning SSLCommerz-style references."""

    def __init__(self, method: PaymentMethod = PaymentMethod.SSL_COMMERZ):
        self.method = method
        self.calls: List[Dict[str, object]] = []

    def initiate(self, amount: Decimal, reference: str, payer_info: PayerInfo) -> GatewayResult:
        transaction_id = f"{reference}_{1700000000000 + len(self.calls)}"
        self.calls.append({"amount": amount, "reference": reference, "payer": payer_info})
        return GatewayResult(
            transaction_id=transaction_id,
            payment_url=f"https://sandbox.example/pay/{transaction_id}",
            raw_request={"tran_id": transaction_id, "total_amount": f"{amount:.2f}"},
            raw_response={"status": "SUCCESS"},
        )


def queued_notifications(db, kind) -> list:
    """Outbox rows queued for ``kind`` as notifications, not as booking events."""
    return (
        db.query(EventOutbox)
        .filter(
            EventOutbox.event_type == kind.value,
            EventOutbox.idempotency_key.like("notify:%"),
        )
        .order_by(EventOutbox.created_at, EventOutbox.id)
        .all()
    )


def upcoming_monday_nine() -> datetime:
    """09:00 Asia/Dhaka on the next Monday after today, as UTC."""
    today = datetime.now(timezone.utc).date()
    days_ahead = (7 - today.weekday()) % 7 or 7
    monday = today + timedelta(days=days_ahead)
    return datetime(monday.year, monday.month, monday.day, 3, 0, tzinfo=timezone.utc)
