"""Minimal SSLCommerz session API client."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)

SESSION_PATH = "/gwprocess/v4/api.php"


class SslCommerzError(RuntimeError):
    """Raised when SSLCommerz refuses to open a checkout session."""

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


class SslCommerzClient:
    """Thin client for the SSLCommerz hosted checkout session API."""

    def __init__(
        self,
        *,
        store_id: str,
        store_password: str | SecretStr,
        base_url: str = "https://sandbox.sslcommerz.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        password = (
            store_password.get_secret_value()
            if isinstance(store_password, SecretStr)
            else store_password
        )
        if not store_id or not password:
            raise ValueError("SSLCommerz store id and password must be provided")

        self._store_id = store_id
        self._store_password = password
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_session(self, **fields: Any) -> Dict[str, Any]:
        """
        Open a checkout session.

        ``fields`` are posted as form data next to the store credentials.
        Returns the response body; ``GatewayPageURL`` is the redirect target.
        """

        form: Dict[str, Any] = {
            "store_id": self._store_id,
            "store_passwd": self._store_password,
        }
        form.update({key: value for key, value in fields.items() if value is not None})

        url = f"{self._base_url}{SESSION_PATH}"
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = client.post(url, data=form)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.error(
                    "SSLCommerz API error %s: %s", status, exc.response.text[:500]
                )
                raise SslCommerzError(
                    f"SSLCommerz responded with status {status}",
                    status_code=status,
                    retryable=status >= 500,
                    error_body=exc.response.text,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("SSLCommerz request failure: %s", str(exc))
                raise SslCommerzError("Failed to reach SSLCommerz", retryable=True) from exc

        try:
            data = cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from SSLCommerz: %s", response.text[:500])
            raise SslCommerzError("Received malformed JSON from SSLCommerz") from exc

        if str(data.get("status", "")).upper() != "SUCCESS" or not data.get("GatewayPageURL"):
            raise SslCommerzError(
                data.get("failedreason") or "SSLCommerz session initialisation failed",
                error_body=data,
            )
        return data
