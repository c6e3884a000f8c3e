"""
Payment gateway adapters.

Each adapter turns ``initiate(amount, reference, payer_info)`` into a
transaction id and (for remote gateways) a checkout URL. Remote calls get
the configured timeout and a bounded number of retries on transient
failures; anything else surfaces as ``PaymentFailedException``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

import httpx

from ..core.config import settings
from ..core.constants import CASH_TRANSACTION_PREFIX, SSLCOMMERZ_REFERENCE_SEPARATOR
from ..core.enums import PaymentMethod
from ..core.exceptions import PaymentFailedException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .bkash_client import BkashClient, BkashError
from .sslcommerz_client import SslCommerzClient, SslCommerzError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


def webhook_callback_url(method: PaymentMethod) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/v1/payments/webhooks/{method.value}"


@dataclass
class PayerInfo:
    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass
class GatewayResult:
    transaction_id: str
    payment_url: Optional[str] = None
    instructions: Optional[str] = None
    raw_request: Dict[str, Any] = field(default_factory=dict)
    raw_response: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    method: PaymentMethod

    def initiate(
        self, amount: Decimal, reference: str, payer_info: PayerInfo
    ) -> GatewayResult:
        ...


def call_with_retry(
    gateway: PaymentMethod,
    operation: Callable[[], T],
    *,
    max_retries: Optional[int] = None,
) -> T:
    """
    Run ``operation`` and retry it on transient gateway errors.

    Errors carry a ``retryable`` flag; only those are retried. The total
    number of attempts is ``1 + max_retries``.
    """
    retries = settings.gateway_max_retries if max_retries is None else max_retries
    attempts = 1 + max(0, retries)
    attempt = 0

    while True:
        attempt += 1
        try:
            result = operation()
        except (BkashError, SslCommerzError) as exc:
            if exc.retryable and attempt < attempts:
                prometheus_metrics.record_gateway_request(gateway.value, "retry")
                logger.warning(
                    "Gateway %s attempt %s/%s failed, retrying: %s",
                    gateway.value,
                    attempt,
                    attempts,
                    exc,
                    extra={"gateway": gateway.value, "attempt": attempt},
                )
                continue
            prometheus_metrics.record_gateway_request(gateway.value, "failure")
            raise PaymentFailedException(
                str(exc),
                gateway=gateway.value,
                details={"attempts": attempt, "status_code": exc.status_code},
            ) from exc
        prometheus_metrics.record_gateway_request(gateway.value, "success")
        return result


class BkashGateway:
    method = PaymentMethod.BKASH

    def __init__(
        self,
        client: Optional[BkashClient] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = client
        self._transport = transport

    @property
    def client(self) -> BkashClient:
        if self._client is None:
            try:
                self._client = BkashClient(
                    app_key=settings.bkash_app_key or "",
                    app_secret=settings.bkash_app_secret or "",
                    username=settings.bkash_username or "",
                    password=settings.bkash_password or "",
                    base_url=settings.bkash_base_url,
                    timeout=settings.gateway_timeout_seconds,
                    transport=self._transport,
                )
            except ValueError as exc:
                raise PaymentFailedException(
                    "bKash is not configured", gateway=self.method.value
                ) from exc
        return self._client

    def initiate(self, amount: Decimal, reference: str, payer_info: PayerInfo) -> GatewayResult:
        invoice_number = f"{reference}{SSLCOMMERZ_REFERENCE_SEPARATOR}{_epoch_millis()}"
        request = {
            "amount": _format_amount(amount),
            "invoice_number": invoice_number,
            "payer_reference": payer_info.phone or "",
            "callback_url": webhook_callback_url(self.method),
            "currency": settings.default_currency,
        }
        client = self.client
        data = call_with_retry(self.method, lambda: client.create_payment(**request))
        return GatewayResult(
            transaction_id=str(data["paymentID"]),
            payment_url=data.get("bkashURL"),
            raw_request=request,
            raw_response=data,
        )


class SslCommerzGateway:
    method = PaymentMethod.SSL_COMMERZ

    def __init__(
        self,
        client: Optional[SslCommerzClient] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = client
        self._transport = transport

    @property
    def client(self) -> SslCommerzClient:
        if self._client is None:
            try:
                self._client = SslCommerzClient(
                    store_id=settings.sslcommerz_store_id or "",
                    store_password=settings.sslcommerz_store_password or "",
                    base_url=settings.sslcommerz_base_url,
                    timeout=settings.gateway_timeout_seconds,
                    transport=self._transport,
                )
            except ValueError as exc:
                raise PaymentFailedException(
                    "SSLCommerz is not configured", gateway=self.method.value
                ) from exc
        return self._client

    def initiate(self, amount: Decimal, reference: str, payer_info: PayerInfo) -> GatewayResult:
        tran_id = f"{reference}{SSLCOMMERZ_REFERENCE_SEPARATOR}{_epoch_millis()}"
        callback = webhook_callback_url(self.method)
        form = {
            "total_amount": _format_amount(amount),
            "currency": settings.default_currency,
            "tran_id": tran_id,
            "success_url": callback,
            "fail_url": callback,
            "cancel_url": callback,
            "ipn_url": callback,
            "product_name": "Consultation session",
            "product_category": "Service",
            "product_profile": "non-physical-goods",
            "shipping_method": "NO",
            "cus_name": payer_info.name or "Customer",
            "cus_email": payer_info.email or "customer@example.com",
            "cus_add1": payer_info.address or "N/A",
            "cus_city": "Dhaka",
            "cus_country": "Bangladesh",
            "cus_phone": payer_info.phone or "N/A",
        }
        client = self.client
        data = call_with_retry(self.method, lambda: client.create_session(**form))
        return GatewayResult(
            transaction_id=tran_id,
            payment_url=data.get("GatewayPageURL"),
            raw_request={k: v for k, v in form.items() if not k.startswith("cus_")},
            raw_response=data,
        )


class CashGateway:
    """Offline payment; the professional confirms receipt out of band."""

    method = PaymentMethod.CASH

    def initiate(self, amount: Decimal, reference: str, payer_info: PayerInfo) -> GatewayResult:
        transaction_id = f"{CASH_TRANSACTION_PREFIX}-{reference}-{_epoch_millis()}"
        instructions = (
            f"Pay {_format_amount(amount)} {settings.default_currency} in cash "
            f"at the session and quote reference {transaction_id}."
        )
        prometheus_metrics.record_gateway_request(self.method.value, "success")
        return GatewayResult(
            transaction_id=transaction_id,
            payment_url=None,
            instructions=instructions,
            raw_request={"amount": _format_amount(amount), "reference": reference},
            raw_response={"transaction_id": transaction_id, "instructions": instructions},
        )


def build_gateway(
    method: PaymentMethod,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> PaymentGateway:
    """
    Return the adapter for ``method``.

    ``transport`` is only honoured for remote gateways and exists so callers
    can route HTTP through a mock transport.
    """
    if method == PaymentMethod.CASH:
        return CashGateway()
    if method == PaymentMethod.BKASH:
        return BkashGateway(transport=transport)
    if method == PaymentMethod.SSL_COMMERZ:
        return SslCommerzGateway(transport=transport)
    raise PaymentFailedException(f"Unsupported payment method {method}")
