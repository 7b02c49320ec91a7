"""Pytest bootstrap configuration.

Environment variables are seeded before any application module is imported
so module-level settings objects pick them up. Provider HTTP APIs are
replaced with httpx.MockTransport; no test touches the network.
"""
import os

os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PAYMENT__DEFAULT_PROVIDER", "bkash")

import copy
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from core.settings import BkashSettings, PaymentSettings, SecuritySettings, WebhookSettings
from domain.payment.entity import Payment, PaymentStatus, Refund
from domain.payment.repository import PaymentRepository, RefundRepository
from infrastructure.cache import InMemoryCache


# One complete credential set per provider; base_url keeps request paths short.
PROVIDER_CONFIGS: dict[str, dict[str, Any]] = {
    "bkash": {
        "app_key": "bk-app-key",
        "app_secret": "bk-app-secret",
        "username": "merchant",
        "password": "merchant-pass",
        "base_url": "https://bkash.test",
    },
    "nagad": {
        "merchant_id": "683002007104225",
        "merchant_private_key": "merchant-private-key",
        "nagad_public_key": "nagad-public-key",
        "base_url": "https://nagad.test",
    },
    "binance": {
        "api_key": "binance-api-key",
        "secret_key": "binance-secret",
        "base_url": "https://binance.test",
    },
    "paypal": {
        "client_id": "paypal-client",
        "client_secret": "paypal-secret",
        "base_url": "https://paypal.test",
    },
    "sslcommerz": {
        "store_id": "store1",
        "store_password": "store-pass",
        "api_key": "ssl-api-key",
        "base_url": "https://sslcommerz.test",
    },
    "shurjopay": {
        "merchant_id": "sp-merchant",
        "merchant_password": "sp-pass",
        "api_key": "sp-api-key",
        "base_url": "https://shurjopay.test",
    },
    "surecash": {
        "api_key": "sc-api-key",
        "secret_key": "sc-secret",
        "merchant_id": "sc-merchant",
        "base_url": "https://surecash.test",
    },
}

Route = Union[tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ProviderStub:
    """Routes ``(method, path)`` to canned responses and records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Route]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, route: Route) -> "ProviderStub":
        self.routes.setdefault((method.upper(), path), []).append(route)
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        # the last route stays in place for repeated calls
        route = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self) -> None:
        self.items: dict[int, Payment] = {}
        self.update_count = 0

    async def create(self, payment: Payment) -> Payment:
        payment = copy.deepcopy(payment)
        payment.id = len(self.items) + 1
        self.items[payment.id] = payment
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        item = self.items.get(payment_id)
        return copy.deepcopy(item) if item else None

    async def get_by_order(self, order_id: str, provider: str) -> Optional[Payment]:
        for item in self.items.values():
            if item.order_id == order_id and item.provider == provider:
                return copy.deepcopy(item)
        return None

    async def get_by_gateway_payment_id(self, provider: str, payment_id: str) -> Optional[Payment]:
        for item in self.items.values():
            if item.provider == provider and item.payment_id == payment_id:
                return copy.deepcopy(item)
        return None

    async def list_by_status(self, statuses: list[PaymentStatus], skip: int = 0, limit: int = 100) -> list[Payment]:
        matched = [copy.deepcopy(p) for p in self.items.values() if p.status in statuses]
        return matched[skip:skip + limit]

    async def update(self, payment: Payment) -> Payment:
        self.update_count += 1
        self.items[payment.id] = copy.deepcopy(payment)
        return copy.deepcopy(payment)


class InMemoryRefundRepository(RefundRepository):
    def __init__(self) -> None:
        self.items: dict[int, Refund] = {}

    async def create(self, refund: Refund) -> Refund:
        refund = copy.deepcopy(refund)
        refund.id = len(self.items) + 1
        self.items[refund.id] = refund
        return copy.deepcopy(refund)

    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        item = self.items.get(refund_id)
        return copy.deepcopy(item) if item else None

    async def list_by_payment(self, payment_id: int) -> list[Refund]:
        return [copy.deepcopy(r) for r in self.items.values() if r.payment_id == payment_id]

    async def update(self, refund: Refund) -> Refund:
        self.items[refund.id] = copy.deepcopy(refund)
        return copy.deepcopy(refund)


class RecordingLogger:
    """Stands in for a structlog logger; keeps ``(level, event, kwargs)``."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def _log(self, level: str):
        def emit(event: str, **kwargs: Any) -> None:
            self.records.append((level, event, kwargs))
        return emit

    def __getattr__(self, level: str):
        return self._log(level)

    def events(self, level: Optional[str] = None) -> list[str]:
        return [event for lvl, event, _ in self.records if level is None or lvl == level]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def store(clock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def provider_configs() -> dict[str, dict[str, Any]]:
    return copy.deepcopy(PROVIDER_CONFIGS)


@pytest.fixture
def test_settings() -> PaymentSettings:
    return PaymentSettings(
        security=SecuritySettings(
            hash_secret="hash-secret",
            min_amount=Decimal("1"),
            max_amount=Decimal("5000"),
        ),
        webhook=WebhookSettings(secrets={"bkash": "whsec-bkash"}),
        token_safety_margin=60,
        bkash=BkashSettings(**PROVIDER_CONFIGS["bkash"]),
    )


@pytest.fixture
def payment_repo() -> InMemoryPaymentRepository:
    return InMemoryPaymentRepository()


@pytest.fixture
def refund_repo() -> InMemoryRefundRepository:
    return InMemoryRefundRepository()


@pytest.fixture
def log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def registry(test_settings, stub, clock):
    from infrastructure.external.payments import GatewayRegistry

    return GatewayRegistry(test_settings, http_client=stub.client(), clock=clock)


@pytest.fixture
def guard(store, test_settings, clock, log):
    from application.services.security_service import SecurityGuard

    return SecurityGuard(store, test_settings, clock=clock, log=log)
