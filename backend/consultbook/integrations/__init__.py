"""Outbound payment gateway integrations."""

from .gateways import (
    BkashGateway,
    CashGateway,
    GatewayResult,
    PayerInfo,
    PaymentGateway,
    SslCommerzGateway,
    build_gateway,
)

__all__ = [
    "BkashGateway",
    "CashGateway",
    "GatewayResult",
    "PayerInfo",
    "PaymentGateway",
    "SslCommerzGateway",
    "build_gateway",
]
