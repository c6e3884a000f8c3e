"""Minimal bKash tokenized checkout client."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


def _reveal(value: str | SecretStr | None) -> str:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return value or ""


class BkashError(RuntimeError):
    """Raised when the bKash API responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        retryable: bool = False,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.error_body = error_body


class BkashClient:
    """Thin client for the bKash tokenized checkout API."""

    def __init__(
        self,
        *,
        app_key: str,
        app_secret: str | SecretStr,
        username: str,
        password: str | SecretStr,
        base_url: str = "https://tokenized.sandbox.bka.sh/tokenized",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not app_key or not username:
            raise ValueError("bKash app key and username must be provided")

        self._app_key = app_key
        self._app_secret = _reveal(app_secret)
        self._username = username
        self._password = _reveal(password)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def grant_token(self) -> str:
        """Exchange app credentials for a short-lived ``id_token``."""

        data = self.request(
            "POST",
            "/checkout/token/grant",
            json_body={"app_key": self._app_key, "app_secret": self._app_secret},
            headers={"username": self._username, "password": self._password},
        )
        token = data.get("id_token")
        if not token:
            raise BkashError(
                data.get("statusMessage") or "bKash token grant returned no id_token",
                error_body=data,
            )
        return str(token)

    def create_payment(
        self,
        *,
        amount: str,
        invoice_number: str,
        payer_reference: str,
        callback_url: str,
        currency: str = "BDT",
    ) -> Dict[str, Any]:
        """Create a checkout payment; returns the body with ``paymentID`` and ``bkashURL``."""

        token = self.grant_token()
        body = {
            "mode": "0011",
            "payerReference": payer_reference or " ",
            "callbackURL": callback_url,
            "amount": amount,
            "currency": currency,
            "intent": "sale",
            "merchantInvoiceNumber": invoice_number,
        }
        data = self.request(
            "POST",
            "/checkout/create",
            json_body=body,
            headers={"Authorization": token, "X-App-Key": self._app_key},
        )
        status = str(data.get("statusCode") or data.get("status") or "")
        if status not in {"0000", "Success"} or not data.get("paymentID"):
            raise BkashError(
                data.get("statusMessage") or data.get("errorMessage") or "bKash payment creation failed",
                error_body=data,
            )
        return data

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw bKash API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        ) as client:
            request = client.build_request(method, url, json=json_body, headers=headers)
            logger.debug(
                "BkashClient request",
                extra={"evt": "bkash_request", "method": request.method, "path": path},
            )
            try:
                response = client.send(request)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None
                try:
                    error_payload = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "bKash API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise BkashError(
                    f"bKash API responded with status {status}",
                    status_code=status,
                    retryable=status >= 500,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("bKash request failure for %s %s: %s", method, path, str(exc))
                raise BkashError("Failed to reach bKash API", retryable=True) from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from bKash for %s %s: %s", method, path, response.text)
            raise BkashError("Received malformed JSON from bKash") from exc
