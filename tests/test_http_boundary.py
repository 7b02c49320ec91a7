from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from api.middleware import get_request_context
from application.services.payment_service import PaymentOrchestrator
from application.services.security_service import SecurityGuard
from core.exceptions import exception_to_http_status
from domain.common.exceptions import (
    ConfigurationError,
    NetworkError,
    RateLimitExceededError,
    ValidationError,
    WebhookSignatureError,
)
from domain.payment.entity import InvalidStateTransitionException, PaymentStatus
from domain.payment.service import PaymentNotFoundException, RefundExceedsPaymentException
from main import create_app
from shared.redaction import REDACTED


ERRORS = {
    "configuration": lambda: ConfigurationError(
        "bKash configuration incomplete", provider="bkash", details={"config": {"app_secret": "leak"}}
    ),
    "validation": lambda: ValidationError("Order ID is required", provider="bkash", field="order_id"),
    "network": lambda: NetworkError("bKash request timed out", provider="bkash"),
    "rate-limit": lambda: RateLimitExceededError("user:1", max_attempts=5, window_minutes=15),
    "signature": lambda: WebhookSignatureError("Invalid webhook signature", provider="bkash"),
    "not-found": lambda: PaymentNotFoundException("id=9"),
    "transition": lambda: InvalidStateTransitionException(PaymentStatus.FAILED, "completed"),
}


@pytest.fixture
def client(test_settings, store, registry):
    app = create_app(payments=test_settings, store=store, registry=registry)

    @app.get("/boom/{kind}")
    async def boom(kind: str):
        if kind in ERRORS:
            raise ERRORS[kind]()
        raise RuntimeError("unexpected")

    @app.get("/whoami")
    async def whoami(request: Request):
        context = get_request_context(request, user_id="42")
        return {"ip": context.ip, "user_agent": context.user_agent, "identifier": context.identifier}

    @app.post("/webhooks/{provider}")
    async def webhook(provider: str, request: Request):
        orchestrator: PaymentOrchestrator = request.app.state.payment_orchestrator
        result = await orchestrator.handle_webhook(provider, request.headers, await request.body())
        return {"payment_id": result.payment_id, "status": result.status.value}

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def test_health_carries_request_id_and_security_headers(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "healthy"}
    assert response.headers["X-Request-ID"]
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_incoming_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.parametrize("kind,status", [
    ("configuration", 500),
    ("validation", 422),
    ("network", 502),
    ("rate-limit", 429),
    ("signature", 401),
    ("not-found", 404),
    ("transition", 409),
])
def test_exception_status_mapping(client, kind, status):
    response = client.get(f"/boom/{kind}", headers={"X-Request-ID": "req-err"})
    assert response.status_code == status
    body = response.json()
    assert body["code"] == int(ERRORS[kind]().code)
    assert body["error"]["request_id"] == "req-err"


def test_error_body_never_contains_secrets(client):
    body = client.get("/boom/configuration").json()
    assert body["error"]["details"]["config"]["app_secret"] == REDACTED
    assert body["error"]["details"]["provider"] == "bkash"


def test_validation_error_names_the_field(client):
    body = client.get("/boom/validation").json()
    assert body["error"]["field"] == "order_id"
    assert body["error"]["type"] == "ValidationError"


def test_rate_limit_sets_retry_after(client):
    response = client.get("/boom/rate-limit")
    assert response.headers["Retry-After"] == "900"


def test_signature_failure_sets_www_authenticate(client):
    response = client.get("/boom/signature")
    assert response.headers["WWW-Authenticate"] == "Signature"


def test_unhandled_exception_is_generic_500(client):
    response = client.get("/boom/other")
    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Internal server error"
    assert body["error"]["details"] is None


def test_request_context_prefers_forwarded_for(client):
    response = client.get(
        "/whoami",
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "Mozilla/5.0"},
    )
    assert response.json() == {"ip": "203.0.113.9", "user_agent": "Mozilla/5.0", "identifier": "user:42"}


def test_webhook_round_trip(client):
    body = b'{"paymentID":"TR0011","transactionStatus":"Completed","trxID":"TRX1"}'
    signature = SecurityGuard.sign_webhook(body, "whsec-bkash")

    ok = client.post("/webhooks/bkash", content=body, headers={"X-Webhook-Signature": signature})
    assert ok.status_code == 200
    assert ok.json() == {"payment_id": "TR0011", "status": "completed"}

    rejected = client.post("/webhooks/bkash", content=body, headers={"X-Webhook-Signature": "bad"})
    assert rejected.status_code == 401


def test_status_mapping_falls_back_to_400():
    assert exception_to_http_status(RefundExceedsPaymentException(Decimal("5"), Decimal("1"))) == 400
