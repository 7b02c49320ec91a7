"""
Gateway registry: maps provider names to adapter factories and hands out
one configured adapter per provider.
"""
from __future__ import annotations

import inspect
import time
from typing import Any, Callable, Mapping, Optional

import httpx

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import GATEWAY_CONTRACT, PaymentGateway
from domain.common.exceptions import ConfigurationError, PaymentGatewayError
from shared.codes.payment_codes import PaymentCode
from shared.redaction import redact_config

from .binance_client import BinanceClient
from .bkash_client import BkashClient
from .nagad_client import NagadClient
from .paypal_client import PaypalClient
from .shurjopay_client import ShurjopayClient
from .sslcommerz_client import SslcommerzClient
from .surecash_client import SurecashClient


logger = get_logger(__name__)

GatewayFactory = Callable[..., PaymentGateway]

# keyword arguments every factory receives from GatewayRegistry.create
FACTORY_KEYWORDS = ("http_client", "timeouts", "token_safety_margin", "clock")

BUILTIN_GATEWAYS: dict[str, GatewayFactory] = {
    "bkash": BkashClient,
    "nagad": NagadClient,
    "binance": BinanceClient,
    "paypal": PaypalClient,
    "sslcommerz": SslcommerzClient,
    "shurjopay": ShurjopayClient,
    "surecash": SurecashClient,
}


def _missing_members(target: Any) -> list[str]:
    return [name for name in GATEWAY_CONTRACT if not callable(getattr(target, name, None))]


def _signature_problem(factory: GatewayFactory) -> Optional[str]:
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        # no introspectable signature; create() reports any mismatch
        return None
    try:
        signature.bind({}, **{name: None for name in FACTORY_KEYWORDS})
    except TypeError as exc:
        return str(exc)
    return None


class GatewayRegistry:
    """Create and cache gateway adapters by provider name.

    ``resolve`` builds adapters from ``PaymentSettings`` blocks and memoizes
    them; ``create`` builds a fresh adapter from an explicit config mapping.
    Names are matched case-insensitively.
    """

    def __init__(
        self,
        settings: PaymentSettings = payment_settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._clock = clock
        self._factories: dict[str, GatewayFactory] = dict(BUILTIN_GATEWAYS)
        self._instances: dict[str, PaymentGateway] = {}

    @staticmethod
    def _key(name: str) -> str:
        return (name or "").strip().lower()

    def register(self, name: str, factory: GatewayFactory) -> None:
        """Register (or replace) a factory under ``name``.

        The factory is called as ``factory(config, http_client=...,
        timeouts=..., token_safety_margin=..., clock=...)``; accepting
        ``**kwargs`` is enough. Classes are checked against the gateway
        contract first, then every factory signature is checked; other
        callables are checked on the adapter they produce.
        """
        key = self._key(name)
        if not key:
            raise ConfigurationError("Gateway name must not be empty")
        if isinstance(factory, type):
            missing = _missing_members(factory)
            if missing:
                raise ConfigurationError(
                    f"Gateway {key!r} does not implement: {', '.join(missing)}",
                    provider=key,
                    details={"missing": missing},
                )
        problem = _signature_problem(factory)
        if problem:
            raise ConfigurationError(
                f"Gateway {key!r} factory has an incompatible signature: {problem}",
                provider=key,
                details={"expected_keywords": list(FACTORY_KEYWORDS)},
            )
        self._factories[key] = factory
        self._instances.pop(key, None)
        logger.info("payment_gateway_registered", provider=key)

    def create(self, name: str, config: Optional[Mapping[str, Any]] = None) -> PaymentGateway:
        key = self._key(name)
        factory = self._factories.get(key)
        if factory is None:
            raise ConfigurationError(
                f"Unknown payment provider: {name}",
                provider=key or None,
                code=PaymentCode.UNKNOWN_PROVIDER,
                details={"available": self.available_gateways()},
            )
        logger.info("payment_gateway_create", provider=key, config=redact_config(dict(config or {})))
        try:
            gateway = factory(
                dict(config or {}),
                http_client=self._http_client,
                timeouts=self._settings.timeouts.model_dump(),
                token_safety_margin=self._settings.token_safety_margin,
                clock=self._clock,
            )
        except PaymentGatewayError:
            raise
        except Exception as exc:
            raise ConfigurationError(
                f"Failed to create {key} gateway: {exc}",
                provider=key,
            ) from exc
        if not isinstance(gateway, PaymentGateway):
            raise ConfigurationError(
                f"Gateway {key!r} does not implement: {', '.join(_missing_members(gateway))}",
                provider=key,
            )
        return gateway

    def resolve(self, name: str) -> PaymentGateway:
        key = self._key(name)
        gateway = self._instances.get(key)
        if gateway is None:
            gateway = self.create(key, self._settings.provider_config(key) or {})
            self._instances[key] = gateway
        return gateway

    def is_available(self, name: str) -> bool:
        key = self._key(name)
        if key not in self._factories:
            return False
        if key in self._instances:
            return self._instances[key].is_configured()
        try:
            self.resolve(key)
        except ConfigurationError:
            return False
        return True

    def available_gateways(self) -> list[str]:
        return sorted(self._factories)

    async def aclose(self) -> None:
        for gateway in list(self._instances.values()):
            close = getattr(gateway, "aclose", None)
            if close is not None:
                await close()
        self._instances.clear()
