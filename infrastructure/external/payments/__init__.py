"""
Payment gateway adapters and the registry that builds them.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway

from .base import BasePaymentClient
from .binance_client import BinanceClient
from .bkash_client import BkashClient
from .nagad_client import NagadClient
from .paypal_client import PaypalClient
from .registry import BUILTIN_GATEWAYS, GatewayRegistry
from .shurjopay_client import ShurjopayClient
from .sslcommerz_client import SslcommerzClient
from .surecash_client import SurecashClient
from .token_cache import TokenCache


_registry: Optional[GatewayRegistry] = None


def get_gateway_registry() -> GatewayRegistry:
    global _registry
    if _registry is None:
        _registry = GatewayRegistry(payment_settings)
    return _registry


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    return get_gateway_registry().resolve(provider or payment_settings.default_provider)


__all__ = [
    "BUILTIN_GATEWAYS",
    "BasePaymentClient",
    "BinanceClient",
    "BkashClient",
    "GatewayRegistry",
    "NagadClient",
    "PaypalClient",
    "ShurjopayClient",
    "SslcommerzClient",
    "SurecashClient",
    "TokenCache",
    "get_gateway_registry",
    "get_payment_gateway",
]
