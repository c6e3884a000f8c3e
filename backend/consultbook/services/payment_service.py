# backend/consultbook/services/payment_service.py
"""
Payment Service.

Starts gateway payments for bookings and reconciles asynchronous gateway
callbacks. Reconciliation is a status-set keyed by transaction id: replaying
or racing a callback converges on the same rows, and a settled payment never
moves back to PENDING or FAILED.

Gateway network calls happen outside any database transaction so no row lock
is held while waiting on a remote party.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal
import logging
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.booking_lock import professional_lock
from ..core.config import settings
from ..core.constants import (
    HOLD_TAKEN_CANCELLATION_REASON,
    REFUND_TRANSACTION_PREFIX,
    SSLCOMMERZ_REFERENCE_SEPARATOR,
)
from ..core.enums import NotificationKind, PaymentLogAction, PaymentMethod
from ..core.exceptions import (
    AmountMismatchException,
    BookingConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from ..integrations.gateways import GatewayResult, PayerInfo, PaymentGateway, build_gateway
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..models.types import now_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import GatewayCallback, decode_webhook
from .base import BaseService
from .booking_service import BookingService
from .conflict_checker import Clock, ConflictChecker
from .invoice_service import InvoiceService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

PAYABLE_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
CENT = Decimal("0.01")

GatewayFactory = Callable[[PaymentMethod], PaymentGateway]


class WebhookOutcome:
    IGNORED = "ignored"
    UNKNOWN_REFERENCE = "unknown_reference"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class PaymentInitiation:
    payment_id: str
    payment_url: Optional[str]
    transaction_id: str
    status: PaymentStatus
    instructions: Optional[str] = None


def _to_cents(value: Union[Decimal, int, float, str]) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def _epoch_millis() -> int:
    return int(now_utc().timestamp() * 1000)


class PaymentService(BaseService):
    """
    Usage:
        service = PaymentService(db)
        started = service.initiate(booking_id, PaymentMethod.BKASH, Decimal("1500"))
        service.handle_webhook("BKASH", {"paymentID": "...", "status": "Completed"})
    """

    def __init__(
        self,
        db: Session,
        *,
        gateway_factory: Optional[GatewayFactory] = None,
        booking_service: Optional[BookingService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        notifications: Optional[NotificationService] = None,
        invoice_service: Optional[InvoiceService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db, clock=clock)
        self.notifications = notifications or NotificationService(db)
        self.booking_service = booking_service or BookingService(
            db, conflict_checker=self.conflict_checker, notifications=self.notifications
        )
        self.invoice_service = invoice_service or InvoiceService(db)
        self.gateway_factory: GatewayFactory = gateway_factory or build_gateway

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("initiate_payment")
    def initiate(
        self,
        booking_id: str,
        method: PaymentMethod,
        amount: Union[Decimal, int, float, str],
        payer_info: Optional[PayerInfo] = None,
        requester_id: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Start a payment attempt for a booking.

        Raises:
            NotFoundException: Unknown booking
            ForbiddenException: ``requester_id`` is not the booking client
            AmountMismatchException: ``amount`` differs from the booking price
            InvalidStateException: Booking not payable, or hold refreshes exhausted
            BookingConflictException: Hold expired and the range was taken
            PaymentFailedException: Gateway refused or was unreachable
        """
        method = PaymentMethod(method)
        payer_info = payer_info or PayerInfo()
        self.log_operation("initiate_payment", booking_id=booking_id, method=method.value)

        booking = self.booking_repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")

        if requester_id is not None and booking.user_id != requester_id:
            raise ForbiddenException("Only the booking client can pay for this booking")

        expected = _to_cents(booking.price)
        provided = _to_cents(amount)
        if provided != expected:
            raise AmountMismatchException(expected, provided)

        if booking.status_enum not in PAYABLE_BOOKING_STATUSES:
            raise InvalidStateException(
                f"Booking cannot be paid - current status: {booking.status}",
                current_state=booking.status,
            )

        if self.conflict_checker.is_hold_expired(booking):
            self._revalidate_stale_hold(booking_id)

        gateway = self.gateway_factory(method)
        result: GatewayResult = gateway.initiate(expected, booking.id, payer_info)

        with self.transaction():
            payment = self.payment_repository.create(
                booking_id=booking.id,
                amount=expected,
                currency=booking.currency or settings.default_currency,
                method=method.value,
                transaction_id=result.transaction_id,
                payment_url=result.payment_url,
                payer_number=payer_info.phone,
                status=PaymentStatus.PENDING.value,
            )
            self.payment_repository.append_log(
                payment.id,
                PaymentLogAction.INITIATE,
                request={
                    "amount": str(expected),
                    "method": method.value,
                    "payer_info": asdict(payer_info),
                    "gateway_request": result.raw_request,
                },
                response={
                    "transaction_id": result.transaction_id,
                    "payment_url": result.payment_url,
                    "gateway_response": result.raw_response,
                },
            )

        self.logger.info(
            "Payment %s started for booking %s via %s tx=%s",
            payment.id,
            booking.id,
            method.value,
            result.transaction_id,
        )
        return PaymentInitiation(
            payment_id=payment.id,
            payment_url=result.payment_url,
            transaction_id=result.transaction_id,
            status=PaymentStatus.PENDING,
            instructions=result.instructions,
        )

    def _revalidate_stale_hold(self, booking_id: str) -> None:
        """
        Re-check an expired PENDING hold before taking money for it.

        If the range was taken meanwhile the booking is cancelled (and that
        cancellation committed) before ``BookingConflictException`` is
        raised. Otherwise the hold is re-armed, at most
        ``max_hold_refreshes`` times per booking.
        """
        booking = self.booking_repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        professional_id = booking.professional_id
        taken_by: list[str] = []

        with professional_lock(professional_id) as acquired:
            if not acquired:
                raise BookingConflictException(
                    "Another booking for this professional is being processed. Please retry."
                )
            with self.transaction():
                self.booking_service.lock_schedule(professional_id)
                booking = self.booking_repository.get_booking(booking_id, for_update=True)
                # Another request may have refreshed or cancelled it already.
                if booking is None or not self.conflict_checker.is_hold_expired(booking):
                    return
                conflicts = self.conflict_checker.find_conflicts(
                    professional_id,
                    booking.start_time,
                    booking.end_time,
                    exclude_booking_id=booking.id,
                )
                if conflicts:
                    taken_by = [b.id for b in conflicts]
                    booking.cancel(None, HOLD_TAKEN_CANCELLATION_REASON)
                    self.db.flush()
                    self.notifications.record_booking_event(booking, "booking.cancelled")
                elif (booking.hold_refresh_count or 0) >= settings.max_hold_refreshes:
                    raise InvalidStateException(
                        "Booking hold expired and can no longer be extended; please book again",
                        current_state=booking.status,
                        details={"hold_refresh_count": booking.hold_refresh_count},
                    )
                else:
                    booking.created_at = self.conflict_checker.now()
                    booking.hold_refresh_count = (booking.hold_refresh_count or 0) + 1
                    self.logger.info(
                        "Re-armed expired hold for booking %s (refresh %s)",
                        booking.id,
                        booking.hold_refresh_count,
                    )

        if taken_by:
            self.logger.info(
                "Booking %s cancelled: hold expired and range taken by %s", booking_id, taken_by
            )
            raise BookingConflictException(
                "Time slot expired and was taken by another user. Please book a new slot.",
                details={"booking_id": booking_id, "conflicting_booking_ids": taken_by},
            )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _find_payment(self, callback: GatewayCallback) -> Optional[Payment]:
        payment = self.payment_repository.get_by_transaction_id(
            callback.transaction_id, for_update=True
        )
        if payment is None and SSLCOMMERZ_REFERENCE_SEPARATOR in callback.transaction_id:
            booking_id = callback.transaction_id.split(SSLCOMMERZ_REFERENCE_SEPARATOR, 1)[0]
            payment = self.payment_repository.get_latest_for_booking(
                booking_id, method=callback.gateway, for_update=True
            )
        return payment

    @staticmethod
    def _next_status(current: PaymentStatus, reported: PaymentStatus) -> PaymentStatus:
        if current.is_settled:
            return current
        return reported

    @BaseService.measure_operation("handle_webhook")
    def handle_webhook(self, method: Union[PaymentMethod, str], payload: Mapping[str, Any]) -> str:
        """
        Reconcile one gateway callback. Never raises for bad input.

        Returns one of the ``WebhookOutcome`` values. Malformed payloads and
        unknown references are logged no-ops.
        """
        try:
            gateway = PaymentMethod(method)
            callback = decode_webhook(gateway, dict(payload))
        except (ValueError, ValidationError) as exc:
            self.logger.warning("Ignoring undecodable %s callback: %s", method, exc)
            prometheus_metrics.record_webhook_event(str(method), WebhookOutcome.IGNORED)
            return WebhookOutcome.IGNORED

        became_paid = False
        with self.transaction():
            payment = self._find_payment(callback)
            if payment is None:
                self.logger.warning(
                    "No payment for %s callback reference %s",
                    gateway.value,
                    callback.transaction_id,
                )
                prometheus_metrics.record_webhook_event(
                    gateway.value, WebhookOutcome.UNKNOWN_REFERENCE
                )
                return WebhookOutcome.UNKNOWN_REFERENCE

            current = payment.status_enum
            target = self._next_status(current, callback.status)
            outcome = WebhookOutcome.UNCHANGED
            if target is not current:
                payment.status = target.value
                if target is PaymentStatus.PAID:
                    payment.paid_at = now_utc()
                    became_paid = True
                outcome = WebhookOutcome.UPDATED

            booking = self.booking_repository.get_booking(payment.booking_id, for_update=True)
            if booking is not None and payment.status == PaymentStatus.PAID.value:
                try:
                    booking_paid = self.booking_service.mark_paid_from_gateway(booking)
                except BookingConflictException as exc:
                    booking_paid = False
                    self._queue_refund_review(booking, payment, exc)
                if booking_paid and became_paid:
                    paid_payload = NotificationService.booking_payload(
                        booking, payment_id=payment.id, amount=str(payment.amount)
                    )
                    for recipient in (booking.user_id, booking.professional_id):
                        self.notifications.notify(
                            NotificationKind.BOOKING_PAID,
                            recipient,
                            paid_payload,
                            aggregate_id=booking.id,
                            version=payment.id,
                        )

            self.payment_repository.append_log(
                payment.id,
                PaymentLogAction.WEBHOOK,
                request=dict(payload),
                response={
                    "previous_status": current.value,
                    "reported_status": callback.status.value,
                    "status": payment.status,
                    "outcome": outcome,
                },
            )
            payment_id = payment.id

        prometheus_metrics.record_webhook_event(gateway.value, outcome)
        self.logger.info(
            "Webhook %s for payment %s: %s -> %s (%s)",
            gateway.value,
            payment_id,
            current.value,
            target.value,
            outcome,
        )
        if became_paid:
            self._issue_invoice(payment_id)
        return outcome

    def _queue_refund_review(
        self, booking: Booking, payment: Payment, conflict: BookingConflictException
    ) -> None:
        """Money arrived for a slot someone else now holds; an operator must refund it."""
        conflicting = conflict.details.get("conflicting_booking_ids", [])
        self.logger.warning(
            "Payment %s settled after booking %s lost its range to %s; booking left %s",
            payment.id,
            booking.id,
            conflicting,
            booking.status,
        )
        self.notifications.notify(
            NotificationKind.PAYMENT_REVIEW,
            settings.admin_notification_email,
            NotificationService.booking_payload(
                booking,
                payment_id=payment.id,
                amount=str(payment.amount),
                conflicting_booking_ids=conflicting,
            ),
            aggregate_id=payment.id,
            version="refund_review",
        )

    def _issue_invoice(self, payment_id: str) -> None:
        """Generate the invoice and tell the client; failures are logged only."""
        try:
            url = self.invoice_service.generate(payment_id)
            with self.transaction():
                payment = self.payment_repository.get_by_id(payment_id, load_relationships=False)
                if payment is None:
                    return
                payment.invoice_url = url
                booking = self.booking_repository.get_booking(payment.booking_id)
                if booking is not None:
                    self.notifications.notify(
                        NotificationKind.INVOICE_READY,
                        booking.user_id,
                        NotificationService.booking_payload(
                            booking, payment_id=payment.id, invoice_url=url
                        ),
                        aggregate_id=payment.id,
                        version="1",
                    )
        except Exception as exc:
            self.logger.error("Invoice generation failed for payment %s: %s", payment_id, exc)

    # ------------------------------------------------------------------
    # Refunds and invoices
    # ------------------------------------------------------------------

    def refund_latest(self, booking_id: str, amount: Decimal) -> Optional[Payment]:
        """
        Mark the booking's latest PAID payment as REFUNDED.

        Must run inside the caller's transaction. Returns None when there is
        no PAID payment to refund.

        Raises:
            AmountMismatchException: ``amount`` exceeds what was paid
        """
        payment = self.payment_repository.get_latest_for_booking(
            booking_id, status=PaymentStatus.PAID, for_update=True
        )
        if payment is None:
            return None
        refund = _to_cents(amount)
        paid = _to_cents(payment.amount)
        if refund > paid:
            raise AmountMismatchException(
                paid, refund, message="Refund amount exceeds the amount paid"
            )
        payment.status = PaymentStatus.REFUNDED.value
        payment.refund_amount = refund
        payment.refund_trx_id = f"{REFUND_TRANSACTION_PREFIX}_{_epoch_millis()}"
        payment.refunded_at = now_utc()
        self.db.flush()
        return payment

    @BaseService.measure_operation("get_invoice_url")
    def get_invoice_url(self, payment_id: str, requester_id: Optional[str] = None) -> str:
        """
        Return the invoice URL of a PAID payment, regenerating a missing file.

        Raises:
            NotFoundException: Unknown payment
            ForbiddenException: Requester is not a participant of the booking
            InvalidStateException: Payment is not PAID
        """
        payment = self.payment_repository.get_by_id(payment_id, load_relationships=False)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
        if requester_id is not None:
            booking: Optional[Booking] = self.booking_repository.get_booking(payment.booking_id)
            if booking is None or not booking.is_participant(requester_id):
                raise ForbiddenException("You don't have access to this invoice")
        if payment.status != PaymentStatus.PAID.value:
            raise InvalidStateException(
                "Invoices are only available for paid payments", current_state=payment.status
            )
        if payment.invoice_url and self.invoice_service.exists(payment.id):
            return str(payment.invoice_url)

        url = self.invoice_service.generate(payment.id)
        with self.transaction():
            payment.invoice_url = url
        return url

