from decimal import Decimal
from pathlib import Path

import pytest
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from consultbook.core.config import settings
from consultbook.core.constants import HOLD_TAKEN_CANCELLATION_REASON
from consultbook.core.enums import NotificationKind, PaymentLogAction, PaymentMethod
from consultbook.core.exceptions import (
    AmountMismatchException,
    BookingConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    PaymentFailedException,
)
from consultbook.integrations.gateways import PayerInfo
from consultbook.models.booking import Booking, BookingStatus
from consultbook.models.event_outbox import EventOutbox
from consultbook.models.payment import Payment, PaymentLog, PaymentStatus
from consultbook.services.invoice_service import register_invoice_font
from consultbook.services.payment_service import WebhookOutcome

from tests.support import NINE_LOCAL, TEN_LOCAL, queued_notifications


@pytest.fixture
def started(payment_service, make_booking):
    """A PENDING booking with one PENDING SSLCommerz payment."""
    booking = make_booking()
    initiation = payment_service.initiate(
        booking.id, PaymentMethod.SSL_COMMERZ, Decimal("1500"), PayerInfo(phone="01700000000")
    )
    return booking, initiation


class TestInitiate:
    def test_creates_pending_payment_and_log(self, db, started, gateway):
        booking, initiation = started
        payment = db.get(Payment, initiation.payment_id)

        assert initiation.status == PaymentStatus.PENDING
        assert initiation.transaction_id.startswith(f"{booking.id}_")
        assert initiation.payment_url.endswith(initiation.transaction_id)
        assert payment.amount == Decimal("1500.00")
        assert payment.payer_number == "01700000000"
        assert gateway.calls[0]["reference"] == booking.id

        logs = db.query(PaymentLog).filter(PaymentLog.payment_id == payment.id).all()
        assert [log.action for log in logs] == [PaymentLogAction.INITIATE.value]
        assert logs[0].request["amount"] == "1500.00"
        assert logs[0].response["transaction_id"] == initiation.transaction_id

    def test_amount_mismatch_writes_nothing(self, db, payment_service, make_booking, gateway):
        booking = make_booking()
        with pytest.raises(AmountMismatchException) as exc_info:
            payment_service.initiate(booking.id, PaymentMethod.BKASH, Decimal("1000"))
        assert exc_info.value.details == {"expected": "1500.00", "provided": "1000.00"}
        assert db.query(Payment).count() == 0
        assert gateway.calls == []

    def test_amount_compared_to_the_cent(self, payment_service, make_booking):
        booking = make_booking()
        with pytest.raises(AmountMismatchException):
            payment_service.initiate(booking.id, PaymentMethod.SSL_COMMERZ, "1500.01")

    def test_unknown_booking(self, payment_service):
        with pytest.raises(NotFoundException):
            payment_service.initiate("01HZZZZZZZZZZZZZZZZZZZZZZZ", PaymentMethod.CASH, 1500)

    def test_only_the_client_pays(self, payment_service, make_booking, other_client):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            payment_service.initiate(
                booking.id, PaymentMethod.CASH, 1500, requester_id=other_client.id
            )

    @pytest.mark.parametrize(
        "status", [BookingStatus.PAID, BookingStatus.CANCELLED, BookingStatus.COMPLETED]
    )
    def test_unpayable_status(self, payment_service, make_booking, status):
        booking = make_booking(status=status)
        with pytest.raises(InvalidStateException):
            payment_service.initiate(booking.id, PaymentMethod.SSL_COMMERZ, 1500)

    def test_confirmed_booking_is_payable(self, payment_service, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        initiation = payment_service.initiate(booking.id, PaymentMethod.SSL_COMMERZ, 1500)
        assert initiation.payment_id

    def test_cash_returns_instructions_without_url(self, db, payment_service, make_booking):
        booking = make_booking()
        initiation = payment_service.initiate(booking.id, PaymentMethod.CASH, 1500)
        assert initiation.payment_url is None
        assert initiation.transaction_id.startswith(f"CASH-{booking.id}-")
        assert "1500.00 BDT" in initiation.instructions
        assert db.get(Payment, initiation.payment_id).method == PaymentMethod.CASH.value

    def test_gateway_failure_writes_nothing(self, db, payment_service, make_booking, gateway):
        def refuse(amount, reference, payer_info):
            raise PaymentFailedException("declined", gateway=PaymentMethod.SSL_COMMERZ.value)

        gateway.initiate = refuse
        booking = make_booking()
        with pytest.raises(PaymentFailedException):
            payment_service.initiate(booking.id, PaymentMethod.SSL_COMMERZ, 1500)
        assert db.query(Payment).count() == 0


class TestStaleHold:
    def test_taken_range_cancels_booking_and_raises(
        self, db, payment_service, booking_service, make_booking, other_client,
        professional_user, clock,
    ):
        stale = make_booking()
        clock.advance(minutes=20)
        booking_service.create(other_client.id, professional_user.id, NINE_LOCAL, TEN_LOCAL)

        with pytest.raises(BookingConflictException):
            payment_service.initiate(stale.id, PaymentMethod.SSL_COMMERZ, 1500)

        db.expire_all()
        reloaded = db.get(Booking, stale.id)
        assert reloaded.status == BookingStatus.CANCELLED.value
        assert reloaded.cancellation_reason == HOLD_TAKEN_CANCELLATION_REASON
        assert reloaded.cancelled_by is None
        assert db.query(Payment).count() == 0

    def test_free_range_rearms_hold(self, db, payment_service, make_booking, clock):
        stale = make_booking()
        clock.advance(minutes=20)
        payment_service.initiate(stale.id, PaymentMethod.SSL_COMMERZ, 1500)

        db.expire_all()
        reloaded = db.get(Booking, stale.id)
        assert reloaded.status == BookingStatus.PENDING.value
        assert reloaded.created_at == clock()
        assert reloaded.hold_refresh_count == 1

    def test_refreshes_are_bounded(self, db, payment_service, make_booking, clock):
        stale = make_booking()
        stale.hold_refresh_count = 3
        db.commit()
        clock.advance(minutes=20)
        with pytest.raises(InvalidStateException):
            payment_service.initiate(stale.id, PaymentMethod.SSL_COMMERZ, 1500)
        assert db.query(Payment).count() == 0


class TestWebhook:
    def test_valid_callback_marks_paid_and_issues_invoice(
        self, db, payment_service, started, client_user, invoice_service
    ):
        booking, initiation = started
        outcome = payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        assert outcome == WebhookOutcome.UPDATED

        db.expire_all()
        payment = db.get(Payment, initiation.payment_id)
        assert payment.status == PaymentStatus.PAID.value
        assert payment.paid_at is not None
        assert db.get(Booking, booking.id).status == BookingStatus.PAID.value
        assert payment.invoice_url.endswith(f"invoice-{payment.id}.pdf")
        assert invoice_service.exists(payment.id)
        ready = queued_notifications(db, NotificationKind.INVOICE_READY)
        assert [n.payload["recipient"] for n in ready] == [client_user.id]

    def test_replayed_callback_is_idempotent(self, db, payment_service, started):
        booking, initiation = started
        body = {"tran_id": initiation.transaction_id, "status": "VALID"}
        first = payment_service.handle_webhook(PaymentMethod.SSL_COMMERZ, body)
        second = payment_service.handle_webhook(PaymentMethod.SSL_COMMERZ, body)

        assert (first, second) == (WebhookOutcome.UPDATED, WebhookOutcome.UNCHANGED)
        paid_notices = queued_notifications(db, NotificationKind.BOOKING_PAID)
        assert len(paid_notices) == 2  # client and professional
        paid_events = db.query(EventOutbox).filter(
            EventOutbox.idempotency_key.like(f"booking:{booking.id}:booking.paid:%")
        )
        assert paid_events.count() == 1
        webhook_logs = (
            db.query(PaymentLog)
            .filter(
                PaymentLog.payment_id == initiation.payment_id,
                PaymentLog.action == PaymentLogAction.WEBHOOK.value,
            )
            .count()
        )
        assert webhook_logs == 2

    def test_settled_payment_never_regresses(self, db, payment_service, started):
        _, initiation = started
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        outcome = payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "FAILED"}
        )
        assert outcome == WebhookOutcome.UNCHANGED
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PAID.value

    def test_failed_then_paid_converges_on_paid(self, db, payment_service, started):
        booking, initiation = started
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "FAILED"}
        )
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.FAILED.value
        assert db.get(Booking, booking.id).status == BookingStatus.PENDING.value

        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PAID.value
        assert db.get(Booking, booking.id).status == BookingStatus.PAID.value

    def test_booking_prefix_fallback(self, db, payment_service, started):
        booking, initiation = started
        outcome = payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": f"{booking.id}_123", "status": "VALID"}
        )
        assert outcome == WebhookOutcome.UPDATED
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PAID.value

    def test_prefix_fallback_stays_on_the_callback_gateway(self, db, payment_service, started):
        booking, initiation = started
        outcome = payment_service.handle_webhook(
            "BKASH", {"paymentID": f"{booking.id}_123", "status": "Completed"}
        )
        assert outcome == WebhookOutcome.UNKNOWN_REFERENCE
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PENDING.value
        assert db.get(Booking, booking.id).status == BookingStatus.PENDING.value

    def test_paid_callback_after_range_was_retaken(
        self, db, payment_service, booking_service, conflict_checker, started,
        other_client, professional_user, clock,
    ):
        booking, initiation = started
        clock.advance(minutes=16)
        rival = booking_service.create(other_client.id, professional_user.id, NINE_LOCAL, TEN_LOCAL)

        outcome = payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        assert outcome == WebhookOutcome.UPDATED

        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PAID.value
        assert db.get(Booking, booking.id).status == BookingStatus.PENDING.value
        live = conflict_checker.find_conflicts(professional_user.id, NINE_LOCAL, TEN_LOCAL)
        assert [b.id for b in live] == [rival.id]

        reviews = queued_notifications(db, NotificationKind.PAYMENT_REVIEW)
        assert [n.payload["recipient"] for n in reviews] == [settings.admin_notification_email]
        assert reviews[0].payload["conflicting_booking_ids"] == [rival.id]
        assert queued_notifications(db, NotificationKind.BOOKING_PAID) == []

    def test_bkash_completed_by_payment_id(self, db, payment_service, make_booking, gateway):
        booking = make_booking()
        gateway.method = PaymentMethod.BKASH
        initiation = payment_service.initiate(booking.id, PaymentMethod.BKASH, 1500)
        outcome = payment_service.handle_webhook(
            "BKASH", {"paymentID": initiation.transaction_id, "status": "Completed"}
        )
        assert outcome == WebhookOutcome.UPDATED
        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.PAID.value

    def test_paid_callback_on_cancelled_booking_leaves_it_cancelled(
        self, db, payment_service, started, client_user, booking_service
    ):
        booking, initiation = started
        booking_service.cancel(booking.id, client_user.id)
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        db.expire_all()
        assert db.get(Payment, initiation.payment_id).status == PaymentStatus.PAID.value
        assert db.get(Booking, booking.id).status == BookingStatus.CANCELLED.value

    def test_unknown_reference_is_a_noop(self, db, payment_service, started):
        outcome = payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": "does-not-exist", "status": "VALID"}
        )
        assert outcome == WebhookOutcome.UNKNOWN_REFERENCE
        assert db.query(Payment).filter(Payment.status == PaymentStatus.PAID.value).count() == 0

    @pytest.mark.parametrize(
        "method,body",
        [
            ("SSL_COMMERZ", {"status": "VALID"}),
            ("BKASH", {"status": "Completed"}),
            ("CASH", {"transaction_id": "CASH-1", "status": "PAID"}),
            ("PAYPAL", {"id": "x"}),
        ],
    )
    def test_malformed_callbacks_are_ignored(self, db, payment_service, started, method, body):
        assert payment_service.handle_webhook(method, body) == WebhookOutcome.IGNORED
        assert db.query(PaymentLog).filter(PaymentLog.action == "WEBHOOK").count() == 0


class TestInvoice:
    def test_participant_gets_url(self, payment_service, started, client_user):
        _, initiation = started
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        url = payment_service.get_invoice_url(initiation.payment_id, client_user.id)
        assert url.endswith(f"/static/invoices/invoice-{initiation.payment_id}.pdf")

    def test_missing_file_is_regenerated(self, payment_service, started, invoice_service):
        _, initiation = started
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        Path(invoice_service.path_for(initiation.payment_id)).unlink()
        payment_service.get_invoice_url(initiation.payment_id)
        assert invoice_service.exists(initiation.payment_id)

    def test_outsider_is_forbidden(self, payment_service, started, other_client):
        _, initiation = started
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )
        with pytest.raises(ForbiddenException):
            payment_service.get_invoice_url(initiation.payment_id, other_client.id)

    def test_bangla_client_name_is_kept(self, db, payment_service, started, invoice_service):
        booking, initiation = started
        booking.client.name = "রহিম Client"
        db.commit()
        payment_service.handle_webhook(
            "SSL_COMMERZ", {"tran_id": initiation.transaction_id, "status": "VALID"}
        )

        payment = db.get(Payment, initiation.payment_id)
        rows = dict(invoice_service.invoice_rows(payment, db.get(Booking, booking.id)))
        assert rows["Client"] == "রহিম Client"
        assert isinstance(pdfmetrics.getFont(register_invoice_font()), TTFont)
        pdf = invoice_service.path_for(payment.id).read_bytes()
        assert pdf.startswith(b"%PDF")
        assert b"????" not in pdf

    def test_unpaid_payment_has_no_invoice(self, payment_service, started):
        _, initiation = started
        with pytest.raises(InvalidStateException):
            payment_service.get_invoice_url(initiation.payment_id)
