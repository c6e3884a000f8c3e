from datetime import timedelta

import pytest

from consultbook.models.booking import BookingStatus
from consultbook.models.payment import Payment, PaymentStatus

from tests.support import SESSION_PRICE, upcoming_monday_nine


@pytest.fixture
def hold(client, auth_headers, client_user, professional_user):
    nine = upcoming_monday_nine()
    response = client.post(
        "/api/v1/bookings",
        json={
            "professional_id": professional_user.id,
            "start_time": nine.isoformat(),
            "end_time": (nine + timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(client_user),
    )
    return response.json()


@pytest.fixture
def pending_ssl_payment(db, hold):
    payment = Payment(
        booking_id=hold["id"],
        amount=SESSION_PRICE,
        currency="BDT",
        method="SSL_COMMERZ",
        transaction_id=f"{hold['id']}_1700000000000",
        status=PaymentStatus.PENDING.value,
    )
    db.add(payment)
    db.commit()
    return payment


def test_cash_initiation(client, auth_headers, client_user, hold):
    response = client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": hold["id"], "method": "CASH", "amount": "1500"},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["payment_url"] is None
    assert body["transaction_id"].startswith("CASH-")


def test_amount_mismatch(client, auth_headers, client_user, hold):
    response = client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": hold["id"], "method": "CASH", "amount": 1000},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "AMOUNT_MISMATCH"


def test_professional_cannot_pay(client, auth_headers, professional_user, hold):
    response = client.post(
        "/api/v1/payments/initiate",
        json={"booking_id": hold["id"], "method": "CASH", "amount": 1500},
        headers=auth_headers(professional_user),
    )
    assert response.status_code == 403


def test_form_encoded_callback_settles_booking(
    client, auth_headers, client_user, hold, pending_ssl_payment
):
    response = client.post(
        "/api/v1/payments/webhooks/ssl_commerz",
        data={"tran_id": pending_ssl_payment.transaction_id, "status": "VALID"},
    )
    assert response.status_code == 200
    assert response.json() == {"received": True, "outcome": "updated"}

    booking = client.get(f"/api/v1/bookings/{hold['id']}", headers=auth_headers(client_user))
    assert booking.json()["status"] == BookingStatus.PAID.value

    invoice = client.get(
        f"/api/v1/payments/{pending_ssl_payment.id}/invoice", headers=auth_headers(client_user)
    )
    assert invoice.status_code == 200
    url = invoice.json()["invoice_url"]
    assert url.endswith(f"/static/invoices/invoice-{pending_ssl_payment.id}.pdf")

    pdf = client.get(f"/static/invoices/invoice-{pending_ssl_payment.id}.pdf")
    assert pdf.status_code == 200
    assert pdf.content.startswith(b"%PDF")


def test_form_callback_reads_reference_from_query(client, db, pending_ssl_payment):
    response = client.post(
        "/api/v1/payments/webhooks/SSL_COMMERZ",
        params={"tran_id": pending_ssl_payment.transaction_id},
        data={"status": "FAILED"},
    )
    assert response.json()["outcome"] == "updated"
    db.expire_all()
    assert db.get(Payment, pending_ssl_payment.id).status == PaymentStatus.FAILED.value


@pytest.mark.parametrize(
    "path,payload",
    [
        ("/api/v1/payments/webhooks/SSL_COMMERZ", {"tran_id": "nobody", "status": "VALID"}),
        ("/api/v1/payments/webhooks/BKASH", {"status": "Completed"}),
        ("/api/v1/payments/webhooks/UNKNOWN", {"anything": "goes"}),
    ],
)
def test_callbacks_always_acknowledged(client, path, payload):
    response = client.post(path, json=payload)
    assert response.status_code == 200
    assert response.json()["received"] is True


def test_invoice_for_unpaid_payment(client, auth_headers, client_user, pending_ssl_payment):
    response = client.get(
        f"/api/v1/payments/{pending_ssl_payment.id}/invoice", headers=auth_headers(client_user)
    )
    assert response.status_code == 422
