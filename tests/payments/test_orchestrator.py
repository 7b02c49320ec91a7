import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import RequestContext
from application.services.payment_service import PaymentOrchestrator
from application.services.security_service import SUSPICIOUS_IPS_KEY, SecurityGuard
from core.settings import PaymentSettings, SecuritySettings, WebhookSettings
from domain.common.exceptions import (
    ConfigurationError,
    NetworkError,
    RateLimitExceededError,
    SecurityError,
    ValidationError,
    WebhookSignatureError,
)
from domain.payment.entity import PaymentStatus
from domain.payment.service import PaymentDomainService
from shared.codes.payment_codes import CanonicalStatus


BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


@pytest.fixture
def orchestrator(registry, guard):
    return PaymentOrchestrator(registry, guard)


@pytest.fixture
def domain(payment_repo, refund_repo):
    return PaymentDomainService(payment_repo, refund_repo)


def _bkash_routes(stub, *, transaction_status="Completed"):
    stub.add("POST", "/tokenized/checkout/token/grant", (200, {"id_token": "tok", "expires_in": 3600}))
    stub.add("POST", "/tokenized/checkout/create", (200, {
        "statusCode": "0000",
        "paymentID": "TR0011",
        "bkashURL": "https://sandbox.bka.sh/pay/TR0011",
        "transactionStatus": "Initiated",
    }))
    stub.add("POST", "/tokenized/checkout/payment/status", (200, {
        "statusCode": "0000",
        "paymentID": "TR0011",
        "trxID": "TRX1",
        "amount": "100.50",
        "currency": "BDT",
        "transactionStatus": transaction_status,
    }))


def _refund_route(stub, refund_id, amount):
    stub.add("POST", "/tokenized/checkout/payment/refund", (200, {
        "statusCode": "0000",
        "refundTrxID": refund_id,
        "amount": amount,
        "transactionStatus": "Completed",
    }))


async def _initialize_order(orchestrator, domain):
    result = await orchestrator.initialize(
        "bkash", {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"}
    )
    payment = await domain.record_initialized(
        "ORDER1", "bkash", Decimal("100.50"), "BDT",
        payment_id=result.payment_id, gateway_response=result.data,
    )
    return result, payment


# ---------------------------------------------------------------------------
# end-to-end lifecycle through the bkash adapter
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_initialize_creates_pending_payment(orchestrator, domain, stub):
    _bkash_routes(stub)

    result, payment = await _initialize_order(orchestrator, domain)

    assert result.success is True
    assert result.status == CanonicalStatus.PENDING
    assert result.redirect_url == "https://sandbox.bka.sh/pay/TR0011"
    assert payment.status == PaymentStatus.PENDING
    assert payment.payment_id == "TR0011"


@pytest.mark.asyncio
async def test_repeated_verify_completes_once(orchestrator, domain, stub, payment_repo):
    _bkash_routes(stub)
    _, payment = await _initialize_order(orchestrator, domain)

    first = await orchestrator.verify("bkash", payment.payment_id)
    payment = await domain.apply_gateway_status(payment.id, first.status, transaction_id=first.transaction_id)
    writes = payment_repo.update_count

    second = await orchestrator.verify("bkash", payment.payment_id)
    payment = await domain.apply_gateway_status(payment.id, second.status, transaction_id=second.transaction_id)

    assert first.status == second.status == CanonicalStatus.COMPLETED
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "TRX1"
    assert payment_repo.update_count == writes
    assert len(stub.calls("POST", "/tokenized/checkout/payment/status")) == 2


@pytest.mark.asyncio
async def test_partial_refunds_until_fully_refunded(orchestrator, domain, stub):
    _bkash_routes(stub)
    _refund_route(stub, "RF1", "40.00")
    _refund_route(stub, "RF2", "60.50")
    _, payment = await _initialize_order(orchestrator, domain)
    verified = await orchestrator.verify("bkash", payment.payment_id)
    payment = await domain.apply_gateway_status(payment.id, verified.status, transaction_id=verified.transaction_id)

    for amount in (Decimal("40.00"), Decimal("60.50")):
        refundable = await domain.refundable_amount(payment.id)
        result = await orchestrator.refund(
            "bkash", payment.payment_id, amount, "customer request", refundable_amount=refundable
        )
        assert result.success is True
        _, refund = await domain.begin_refund(payment.id, amount, "customer request")
        _, payment = await domain.complete_refund(refund.id, result.transaction_id)

    assert payment.status == PaymentStatus.REFUNDED
    assert payment.refunded_amount == Decimal("100.50")

    refundable = await domain.refundable_amount(payment.id)
    assert refundable == Decimal("0")
    sent = len(stub.requests)
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.refund(
            "bkash", payment.payment_id, Decimal("0.01"), "one more", refundable_amount=refundable
        )
    assert exc_info.value.field == "amount"
    assert len(stub.requests) == sent


@pytest.mark.asyncio
async def test_token_transport_failure_leaves_no_state(orchestrator, domain, stub, payment_repo, registry):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    stub.add("POST", "/tokenized/checkout/token/grant", refuse)

    with pytest.raises(NetworkError):
        await orchestrator.initialize("bkash", {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"})

    assert payment_repo.items == {}
    assert registry.resolve("bkash").token_cache.token is None
    assert stub.calls("POST", "/tokenized/checkout/create") == []


# ---------------------------------------------------------------------------
# result classification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_business_rejection_is_returned_not_raised(orchestrator, stub):
    stub.add("POST", "/tokenized/checkout/token/grant", (200, {"id_token": "tok", "expires_in": 3600}))
    stub.add("POST", "/tokenized/checkout/payment/status", (200, {
        "statusCode": "2056",
        "statusMessage": "Invalid Payment State",
    }))
    result = await orchestrator.verify("bkash", "TR0011")
    assert result.success is False
    assert result.message == "Invalid Payment State"


@pytest.mark.asyncio
async def test_status_uses_adapter_status_call(orchestrator, stub):
    _bkash_routes(stub, transaction_status="Initiated")
    result = await orchestrator.status("bkash", "TR0011")
    assert result.status == CanonicalStatus.PENDING


@pytest.mark.asyncio
async def test_unconfigured_provider_is_configuration_error(orchestrator, stub):
    with pytest.raises(ConfigurationError):
        await orchestrator.verify("nagad", "NGD-1")
    assert stub.requests == []


@pytest.mark.asyncio
async def test_invalid_request_is_rejected_before_any_check(orchestrator, stub, store):
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.initialize(
            "bkash",
            {"order_id": "ORDER 1", "amount": "10", "currency": "BDT"},
            context=RequestContext(ip="10.0.0.1", user_agent=BROWSER_UA),
        )
    assert exc_info.value.field == "order_id"
    assert await store.get("payment_rate_limit:ip:10.0.0.1") is None
    assert stub.requests == []


@pytest.mark.asyncio
async def test_malformed_request_mapping_is_validation_error(orchestrator):
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.initialize("bkash", {"order_id": "ORDER1", "amount": "ten"})
    assert exc_info.value.field == "amount"


# ---------------------------------------------------------------------------
# security pre-checks
# ---------------------------------------------------------------------------

def _guarded_orchestrator(registry, store, clock, log, **security):
    settings = PaymentSettings(security=SecuritySettings(hash_secret="hash-secret", **security))
    return PaymentOrchestrator(registry, SecurityGuard(store, settings, clock=clock, log=log))


@pytest.mark.asyncio
async def test_rate_limit_applies_before_the_provider_call(registry, store, clock, log, stub):
    _bkash_routes(stub)
    orchestrator = _guarded_orchestrator(
        registry, store, clock, log, rate_limit_max_attempts=2, rate_limit_window_minutes=1
    )
    context = RequestContext(ip="10.0.0.7", user_agent=BROWSER_UA, user_id="42")
    request = {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"}

    await orchestrator.initialize("bkash", request, context=context)
    await orchestrator.initialize("bkash", request, context=context)
    creates = len(stub.calls("POST", "/tokenized/checkout/create"))

    with pytest.raises(RateLimitExceededError):
        await orchestrator.initialize("bkash", request, context=context)
    assert len(stub.calls("POST", "/tokenized/checkout/create")) == creates

    clock.advance(60)
    result = await orchestrator.initialize("bkash", request, context=context)
    assert result.success is True


@pytest.mark.asyncio
async def test_fraud_indicators_are_attached_to_result(orchestrator, stub, store):
    _bkash_routes(stub)
    await store.set(SUSPICIOUS_IPS_KEY, ["10.0.0.66"])

    result = await orchestrator.initialize(
        "bkash",
        {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"},
        context=RequestContext(ip="10.0.0.66", user_agent="curl/8.4.0"),
    )

    assert result.success is True
    assert result.fraud_indicators == frozenset({"suspicious_ip", "suspicious_user_agent"})


@pytest.mark.asyncio
async def test_clean_request_has_no_fraud_indicators(orchestrator, stub):
    _bkash_routes(stub)
    result = await orchestrator.initialize(
        "bkash",
        {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"},
        context=RequestContext(ip="10.0.0.8", user_agent=BROWSER_UA),
    )
    assert result.fraud_indicators == frozenset()


@pytest.mark.asyncio
async def test_blocked_fraud_indicator_rejects_request(registry, store, clock, log, stub):
    _bkash_routes(stub)
    orchestrator = _guarded_orchestrator(
        registry, store, clock, log, blocked_fraud_indicators=["suspicious_ip"]
    )
    await store.set(SUSPICIOUS_IPS_KEY, ["10.0.0.66"])

    with pytest.raises(SecurityError) as exc_info:
        await orchestrator.initialize(
            "bkash",
            {"order_id": "ORDER1", "amount": "100.50", "currency": "BDT"},
            context=RequestContext(ip="10.0.0.66", user_agent=BROWSER_UA),
        )
    assert exc_info.value.details["indicators"] == ["suspicious_ip"]
    assert stub.requests == []


@pytest.mark.asyncio
async def test_refund_is_rate_limited(registry, store, clock, log, stub):
    orchestrator = _guarded_orchestrator(
        registry, store, clock, log, rate_limit_max_attempts=0
    )
    with pytest.raises(RateLimitExceededError):
        await orchestrator.refund(
            "bkash", "TR0011", "10", "duplicate", context=RequestContext(user_id="42")
        )
    assert stub.requests == []


# ---------------------------------------------------------------------------
# webhooks
# ---------------------------------------------------------------------------

WEBHOOK_BODY = json.dumps({
    "paymentID": "TR0011",
    "trxID": "TRX1",
    "transactionStatus": "Completed",
    "amount": "100.50",
}).encode()


@pytest.mark.asyncio
async def test_signed_webhook_is_normalized(orchestrator):
    signature = SecurityGuard.sign_webhook(WEBHOOK_BODY, "whsec-bkash")

    result = await orchestrator.handle_webhook("bkash", {"X-Webhook-Signature": signature}, WEBHOOK_BODY)

    assert result.payment_id == "TR0011"
    assert result.status == CanonicalStatus.COMPLETED
    assert result.amount == Decimal("100.50")


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(orchestrator):
    with pytest.raises(WebhookSignatureError):
        await orchestrator.handle_webhook("bkash", {"X-Webhook-Signature": "0" * 64}, WEBHOOK_BODY)


@pytest.mark.asyncio
async def test_webhook_duplicate_delivery_is_idempotent(orchestrator, domain, stub, payment_repo):
    _bkash_routes(stub)
    _, payment = await _initialize_order(orchestrator, domain)
    signature = SecurityGuard.sign_webhook(WEBHOOK_BODY, "whsec-bkash")
    headers = {"X-Webhook-Signature": signature}

    for _ in range(2):
        event = await orchestrator.handle_webhook("bkash", headers, WEBHOOK_BODY)
        payment = await domain.apply_gateway_status(payment.id, event.status, transaction_id=event.transaction_id)

    assert payment.status == PaymentStatus.COMPLETED
    assert payment_repo.update_count == 1


@pytest.mark.asyncio
async def test_webhook_body_must_be_a_json_object(registry, store, clock, log):
    settings = PaymentSettings(webhook=WebhookSettings(secrets={}))
    orchestrator = PaymentOrchestrator(registry, SecurityGuard(store, settings, clock=clock, log=log))

    with pytest.raises(ValidationError):
        await orchestrator.handle_webhook("bkash", {}, b"not json")
    with pytest.raises(ValidationError):
        await orchestrator.handle_webhook("bkash", {}, b"[1, 2]")
    assert "webhook_signature_check_skipped" in log.events("warning")
