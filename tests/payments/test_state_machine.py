from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    InvalidStateTransitionException,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
)
from domain.payment.events import PaymentCompleted, PaymentFailed, PaymentInitialized, PaymentRefunded
from domain.payment.service import (
    PaymentAlreadyExistsException,
    PaymentDomainService,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
)
from shared.codes.payment_codes import CanonicalStatus


def _payment(status=PaymentStatus.PENDING, amount="100.00", refunded="0"):
    return Payment(
        id=1,
        order_id="ORDER1",
        provider="bkash",
        amount=Decimal(amount),
        currency="bdt",
        status=status,
        refunded_amount=Decimal(refunded),
    )


def _refund(amount, status=RefundStatus.COMPLETED):
    return Refund(
        id=None,
        payment_id=1,
        order_id="ORDER1",
        provider="bkash",
        amount=Decimal(amount),
        currency="BDT",
        status=status,
    )


# ---------------------------------------------------------------------------
# Payment entity
# ---------------------------------------------------------------------------

def test_payment_validates_on_creation():
    assert _payment().currency == "BDT"
    with pytest.raises(DomainValidationException):
        _payment(amount="0")
    with pytest.raises(DomainValidationException):
        _payment(refunded="150")
    with pytest.raises(DomainValidationException):
        Payment(id=None, order_id="", provider="bkash", amount=Decimal("1"), currency="BDT")
    with pytest.raises(DomainValidationException):
        Payment(id=None, order_id="O1", provider="bkash", amount=Decimal("1"), currency="B1")


def test_pending_to_completed_is_idempotent():
    payment = _payment()
    assert payment.apply_status(CanonicalStatus.COMPLETED, transaction_id="TRX1") is True
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "TRX1"
    assert payment.paid_at is not None

    paid_at = payment.paid_at
    assert payment.apply_status(CanonicalStatus.COMPLETED, transaction_id="TRX2") is False
    assert payment.transaction_id == "TRX1"
    assert payment.paid_at == paid_at


def test_pending_status_moves_to_processing_once():
    payment = _payment()
    assert payment.apply_status(CanonicalStatus.PENDING) is True
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.apply_status(CanonicalStatus.PENDING) is False
    assert payment.apply_status(CanonicalStatus.COMPLETED) is True


def test_failed_is_idempotent_and_terminal():
    payment = _payment(PaymentStatus.PROCESSING)
    assert payment.apply_status(CanonicalStatus.FAILED, reason="declined") is True
    assert payment.failure_reason == "declined"
    assert payment.apply_status(CanonicalStatus.FAILED) is False
    with pytest.raises(InvalidStateTransitionException):
        payment.apply_status(CanonicalStatus.COMPLETED)


def test_completed_cannot_fail():
    payment = _payment(PaymentStatus.COMPLETED)
    with pytest.raises(InvalidStateTransitionException) as exc_info:
        payment.apply_status(CanonicalStatus.FAILED)
    assert exc_info.value.details == {"current": "completed", "target": "failed"}


@pytest.mark.parametrize("status", [CanonicalStatus.UNKNOWN, CanonicalStatus.REFUNDED])
def test_unknown_and_refunded_statuses_are_noops(status):
    payment = _payment(PaymentStatus.COMPLETED)
    assert payment.apply_status(status) is False
    assert payment.status == PaymentStatus.COMPLETED


def test_cancel_only_before_completion():
    payment = _payment()
    assert payment.mark_cancelled() is True
    assert payment.mark_cancelled() is False
    assert payment.is_final_status() is True

    with pytest.raises(InvalidStateTransitionException):
        _payment(PaymentStatus.COMPLETED).mark_cancelled()


def test_settle_refunds_partial_then_full():
    payment = _payment(PaymentStatus.COMPLETED)
    assert payment.settle_refunds([_refund("40")]) is True
    assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
    assert payment.refunded_amount == Decimal("40")
    assert payment.can_refund() is True

    # replaying the same refund set changes nothing
    assert payment.settle_refunds([_refund("40")]) is False

    assert payment.settle_refunds([_refund("40"), _refund("60")]) is True
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.refunded_at is not None
    assert payment.can_refund() is False


def test_settle_ignores_unfinished_refunds():
    payment = _payment(PaymentStatus.COMPLETED)
    refunds = [_refund("30", RefundStatus.PENDING), _refund("20", RefundStatus.FAILED)]
    assert payment.settle_refunds(refunds) is False
    assert payment.status == PaymentStatus.COMPLETED


def test_settle_rejects_decrease_and_overflow():
    payment = _payment(PaymentStatus.PARTIALLY_REFUNDED, refunded="40")
    with pytest.raises(DomainValidationException):
        payment.settle_refunds([_refund("30")])
    with pytest.raises(DomainValidationException):
        payment.settle_refunds([_refund("60"), _refund("50")])


def test_settle_requires_completed_payment():
    with pytest.raises(InvalidStateTransitionException):
        _payment(PaymentStatus.PENDING).settle_refunds([])


def test_refundable_amount_subtracts_in_flight_refunds():
    payment = _payment(PaymentStatus.PARTIALLY_REFUNDED, refunded="30")
    refunds = [_refund("30"), _refund("20", RefundStatus.PROCESSING), _refund("5", RefundStatus.FAILED)]
    assert payment.calculate_refundable_amount(refunds) == Decimal("50")


def test_refund_amount_has_no_tolerance():
    payment = _payment(PaymentStatus.COMPLETED, amount="100.00")
    assert payment.calculate_refundable_amount([_refund("99.99", RefundStatus.PENDING)]) == Decimal("0.01")


def test_refund_transitions():
    refund = _refund("10", RefundStatus.PENDING)
    assert refund.mark_processing() is True
    assert refund.mark_completed("RF1") is True
    assert refund.mark_completed("RF2") is False
    assert refund.refund_id == "RF1"
    with pytest.raises(DomainValidationException):
        refund.mark_failed("late failure")


def test_refund_reason_length():
    with pytest.raises(DomainValidationException):
        Refund(
            id=None, payment_id=1, order_id="O1", provider="bkash",
            amount=Decimal("1"), currency="BDT", reason="x" * 256,
        )


# ---------------------------------------------------------------------------
# PaymentDomainService
# ---------------------------------------------------------------------------

@pytest.fixture
def service(payment_repo, refund_repo):
    return PaymentDomainService(payment_repo, refund_repo)


async def _completed_payment(service, amount="100.00"):
    payment = await service.record_initialized("ORDER1", "bkash", Decimal(amount), "BDT", payment_id="TR0011")
    return await service.apply_gateway_status(payment.id, CanonicalStatus.COMPLETED, transaction_id="TRX1")


@pytest.mark.asyncio
async def test_record_initialized_is_unique_per_order_and_provider(service):
    payment = await service.record_initialized("ORDER1", "BKASH", Decimal("10"), "BDT", payment_id="TR1")
    assert payment.id == 1
    assert payment.provider == "bkash"
    assert payment.status == PaymentStatus.PENDING
    assert isinstance(service.events[-1], PaymentInitialized)

    with pytest.raises(PaymentAlreadyExistsException):
        await service.record_initialized("ORDER1", "bkash", Decimal("10"), "BDT")
    # the same order may be paid through another provider
    await service.record_initialized("ORDER1", "nagad", Decimal("10"), "BDT")


@pytest.mark.asyncio
async def test_duplicate_webhook_is_not_persisted_twice(service, payment_repo):
    payment = await _completed_payment(service)
    writes = payment_repo.update_count

    again = await service.apply_gateway_status(payment.id, CanonicalStatus.COMPLETED, transaction_id="TRX1")

    assert again.status == PaymentStatus.COMPLETED
    assert payment_repo.update_count == writes
    completed_events = [e for e in service.events if isinstance(e, PaymentCompleted)]
    assert len(completed_events) == 1


@pytest.mark.asyncio
async def test_failed_status_emits_event(service):
    payment = await service.record_initialized("ORDER2", "bkash", Decimal("10"), "BDT")
    failed = await service.apply_gateway_status(payment.id, CanonicalStatus.FAILED, reason="expired")
    assert failed.status == PaymentStatus.FAILED
    assert isinstance(service.events[-1], PaymentFailed)
    assert service.events[-1].reason == "expired"


@pytest.mark.asyncio
async def test_refund_lifecycle(service):
    payment = await _completed_payment(service)

    _, refund = await service.begin_refund(payment.id, Decimal("40"), "customer request")
    assert await service.refundable_amount(payment.id) == Decimal("60.00")

    refund, payment = await service.complete_refund(refund.id, "RF1")
    assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
    assert payment.refunded_amount == Decimal("40")
    assert isinstance(service.events[-1], PaymentRefunded)
    assert service.events[-1].fully_refunded is False

    _, refund = await service.begin_refund(payment.id, Decimal("60"), "rest")
    _, payment = await service.complete_refund(refund.id, "RF2")
    assert payment.status == PaymentStatus.REFUNDED
    assert service.events[-1].fully_refunded is True
    assert await service.refundable_amount(payment.id) == Decimal("0")


@pytest.mark.asyncio
async def test_begin_refund_checks_refundable_amount(service):
    payment = await _completed_payment(service)
    await service.begin_refund(payment.id, Decimal("70"), "first")
    with pytest.raises(RefundExceedsPaymentException) as exc_info:
        await service.begin_refund(payment.id, Decimal("30.01"), "second")
    assert exc_info.value.details["refundable"] == "30.00"


@pytest.mark.asyncio
async def test_begin_refund_requires_completed_payment(service):
    payment = await service.record_initialized("ORDER3", "bkash", Decimal("10"), "BDT")
    with pytest.raises(PaymentNotRefundableException):
        await service.begin_refund(payment.id, Decimal("1"), "too early")


@pytest.mark.asyncio
async def test_failed_refund_releases_reservation(service):
    payment = await _completed_payment(service)
    _, refund = await service.begin_refund(payment.id, Decimal("100"), "all")
    assert await service.refundable_amount(payment.id) == Decimal("0")

    refund, payment = await service.fail_refund(refund.id, "provider declined")

    assert refund.status == RefundStatus.FAILED
    assert payment.status == PaymentStatus.COMPLETED
    assert await service.refundable_amount(payment.id) == Decimal("100.00")


@pytest.mark.asyncio
async def test_complete_refund_twice_is_noop(service, payment_repo):
    payment = await _completed_payment(service)
    _, refund = await service.begin_refund(payment.id, Decimal("10"), "x")
    await service.complete_refund(refund.id, "RF1")
    writes = payment_repo.update_count
    events = len(service.events)

    _, payment = await service.complete_refund(refund.id, "RF1")

    assert payment.refunded_amount == Decimal("10")
    assert payment_repo.update_count == writes
    assert len(service.events) == events


@pytest.mark.asyncio
async def test_clear_events(service):
    await service.record_initialized("ORDER9", "bkash", Decimal("10"), "BDT")
    events = service.clear_events()
    assert len(events) == 1
    assert service.events == []
