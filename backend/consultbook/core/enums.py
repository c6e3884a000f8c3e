# backend/consultbook/core/enums.py
"""
Core enums for the booking engine.

Roles are a closed set. Capabilities are attached to the role itself so call
sites ask ``role.may_override_booking_ownership`` instead of comparing strings.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles known to the booking engine."""

    CLIENT = "client"
    PROFESSIONAL = "professional"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def may_override_booking_ownership(self) -> bool:
        """Whether this role may act on bookings it does not participate in."""
        return self in (RoleName.MODERATOR, RoleName.ADMIN)

    @property
    def may_resolve_disputes(self) -> bool:
        return self in (RoleName.MODERATOR, RoleName.ADMIN)

    @classmethod
    def parse(cls, value: "str | RoleName | None") -> "RoleName":
        """Coerce a stored role value, defaulting unknown values to CLIENT."""
        if isinstance(value, RoleName):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.CLIENT


class PaymentMethod(str, Enum):
    """Supported payment gateways."""

    BKASH = "BKASH"
    SSL_COMMERZ = "SSL_COMMERZ"
    CASH = "CASH"


class PaymentLogAction(str, Enum):
    """Audit trail actions for payment records."""

    INITIATE = "INITIATE"
    WEBHOOK = "WEBHOOK"


class NotificationKind(str, Enum):
    """Outbound notification kinds delivered through the outbox."""

    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_STATUS_CHANGED = "booking.status_changed"
    BOOKING_RESCHEDULED = "booking.rescheduled"
    BOOKING_PAID = "booking.paid"
    INVOICE_READY = "invoice.ready"
    DISPUTE_RAISED = "dispute.raised"
    DISPUTE_RESOLVED = "dispute.resolved"
    PAYMENT_REVIEW = "payment.refund_review"
