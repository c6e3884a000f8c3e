# backend/consultbook/schemas/payment.py
"""
Payment request/response schemas and gateway callback payloads.

Inbound callbacks are decoded into one model per gateway (a tagged union on
``gateway``) and normalised to ``GatewayCallback`` before reconciliation.
Unknown fields are ignored; missing identifiers fail validation and the
callback is treated as noise.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ..core.enums import PaymentMethod
from ..models.payment import PaymentStatus
from .base import Money, StandardizedModel, StrictRequestModel


class PaymentInitiateRequest(StrictRequestModel):
    booking_id: str = Field(..., min_length=1)
    method: PaymentMethod
    amount: Money
    payer_number: Optional[str] = Field(None, max_length=32, description="Wallet/phone number")


class PaymentInitiateResponse(StandardizedModel):
    payment_id: str
    payment_url: Optional[str] = None
    transaction_id: str
    status: PaymentStatus
    instructions: Optional[str] = None


class PaymentResponse(StandardizedModel):
    id: str
    booking_id: str
    amount: Money
    currency: str
    method: PaymentMethod
    transaction_id: str
    payment_url: Optional[str] = None
    status: PaymentStatus
    refund_amount: Optional[Money] = None
    refund_trx_id: Optional[str] = None
    invoice_url: Optional[str] = None
    created_at: datetime


class InvoiceResponse(StandardizedModel):
    payment_id: str
    invoice_url: str


class WebhookAck(StandardizedModel):
    """Gateways only need a 200; the outcome is informational."""

    received: bool = True
    outcome: str


@dataclass(frozen=True)
class GatewayCallback:
    """Gateway-neutral view of a callback."""

    gateway: PaymentMethod
    transaction_id: str
    status: PaymentStatus  # PAID or FAILED


class _WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BkashWebhookPayload(_WebhookPayload):
    gateway: Literal["BKASH"] = "BKASH"
    payment_id: Optional[str] = Field(None, alias="paymentID")
    merchant_invoice_number: Optional[str] = Field(None, alias="merchantInvoiceNumber")
    status: str = Field(..., validation_alias=AliasChoices("status", "transactionStatus"))
    trx_id: Optional[str] = Field(None, alias="trxID")

    @model_validator(mode="after")
    def _has_reference(self) -> "BkashWebhookPayload":
        if not (self.payment_id or self.merchant_invoice_number):
            raise ValueError("paymentID or merchantInvoiceNumber is required")
        return self

    def normalise(self) -> GatewayCallback:
        reference = self.payment_id or self.merchant_invoice_number or ""
        paid = self.status.strip().lower() == "completed"
        return GatewayCallback(
            gateway=PaymentMethod.BKASH,
            transaction_id=reference,
            status=PaymentStatus.PAID if paid else PaymentStatus.FAILED,
        )


class SslCommerzWebhookPayload(_WebhookPayload):
    gateway: Literal["SSL_COMMERZ"] = "SSL_COMMERZ"
    tran_id: str = Field(..., min_length=1)
    status: str
    val_id: Optional[str] = None

    def normalise(self) -> GatewayCallback:
        paid = self.status.strip().upper() == "VALID"
        return GatewayCallback(
            gateway=PaymentMethod.SSL_COMMERZ,
            transaction_id=self.tran_id,
            status=PaymentStatus.PAID if paid else PaymentStatus.FAILED,
        )


GatewayWebhookPayload = Annotated[
    Union[BkashWebhookPayload, SslCommerzWebhookPayload],
    Field(discriminator="gateway"),
]

_webhook_adapter: TypeAdapter[Any] = TypeAdapter(GatewayWebhookPayload)


def decode_webhook(method: PaymentMethod, payload: Dict[str, Any]) -> GatewayCallback:
    """
    Decode a raw callback body for ``method``.

    Raises ``pydantic.ValidationError`` for malformed bodies and for methods
    that have no callback channel (cash).
    """
    tagged = {**payload, "gateway": method.value}
    decoded = _webhook_adapter.validate_python(tagged)
    callback: GatewayCallback = decoded.normalise()
    return callback
