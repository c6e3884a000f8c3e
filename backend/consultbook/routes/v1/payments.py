# backend/consultbook/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /initiate - Start a payment for a booking
    POST /webhooks/{method} - Gateway callbacks (always 200)
    GET /{payment_id}/invoice - Invoice URL for a paid payment
"""

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Path, Request
from starlette.datastructures import FormData

from ...api.dependencies import get_current_principal, get_payment_service
from ...integrations.gateways import PayerInfo
from ...schemas.payment import (
    InvoiceResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    WebhookAck,
)
from ...services.directory_service import Principal
from ...services.payment_service import PaymentService, WebhookOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


async def _read_callback_body(request: Request) -> Dict[str, Any]:
    """Gateways post JSON (bKash) or form data (SSLCommerz IPN)."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            body = await request.json()
            return body if isinstance(body, dict) else {}
        form: FormData = await request.form()
        data: Dict[str, Any] = {key: value for key, value in form.items() if isinstance(value, str)}
        data.update({k: v for k, v in request.query_params.items() if k not in data})
        return data
    except ValueError:
        logger.warning("Unreadable callback body on %s", request.url.path)
        return {}


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    responses={
        400: {"description": "Amount mismatch"},
        402: {"description": "Gateway refused the payment"},
        409: {"description": "Hold expired and slot taken"},
    },
)
async def initiate_payment(
    payload: PaymentInitiateRequest = Body(...),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    payer = PayerInfo(phone=payload.payer_number, name=principal.name, email=principal.email)
    started = await asyncio.to_thread(
        payment_service.initiate,
        payload.booking_id,
        payload.method,
        payload.amount,
        payer,
        principal.id,
    )
    return PaymentInitiateResponse.model_validate(started)


@router.post("/webhooks/{method}", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    method: str = Path(..., description="BKASH or SSL_COMMERZ"),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookAck:
    """Reconcile a gateway callback. Gateways always receive 200."""
    body = await _read_callback_body(request)
    try:
        outcome = await asyncio.to_thread(
            payment_service.handle_webhook, method.strip().upper(), body
        )
    except Exception:
        logger.exception("Webhook processing failed for %s", method)
        outcome = WebhookOutcome.IGNORED
    return WebhookAck(received=True, outcome=outcome)


@router.get(
    "/{payment_id}/invoice",
    response_model=InvoiceResponse,
    responses={404: {"description": "Payment not found"}, 422: {"description": "Payment not paid"}},
)
async def get_invoice(
    payment_id: str = Path(..., description="Payment ULID"),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> InvoiceResponse:
    requester = None if principal.role.may_override_booking_ownership else principal.id
    url = await asyncio.to_thread(payment_service.get_invoice_url, payment_id, requester)
    return InvoiceResponse(payment_id=payment_id, invoice_url=url)
