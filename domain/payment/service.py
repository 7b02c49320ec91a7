"""
支付领域服务 - 把网关结果应用到支付聚合上
"""
from typing import List, Optional
from decimal import Decimal
from datetime import datetime, timezone

from .entity import Payment, Refund, PaymentStatus, RefundStatus
from .repository import PaymentRepository, RefundRepository
from .events import (
    PaymentInitialized,
    PaymentCompleted,
    PaymentFailed,
    PaymentCancelled,
    PaymentRefunded,
)
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import CanonicalStatus, PaymentCode


class PaymentAlreadyExistsException(BusinessException):
    """订单已存在支付记录"""
    def __init__(self, order_id: str, provider: str):
        super().__init__(
            code=PaymentCode.PAYMENT_ALREADY_EXISTS,
            message=f"订单 {order_id} 已存在 {provider} 支付记录",
            error_type="PaymentAlreadyExists",
            details={"order_id": order_id, "provider": provider},
        )


class PaymentNotFoundException(BusinessException):
    """支付记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"支付记录不存在: {identifier}",
            error_type="PaymentNotFound",
        )


class RefundNotFoundException(BusinessException):
    """退款记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.REFUND_NOT_FOUND,
            message=f"退款记录不存在: {identifier}",
            error_type="RefundNotFound",
        )


class RefundExceedsPaymentException(BusinessException):
    """退款金额超过可退金额"""
    def __init__(self, refund_amount: Decimal, available: Decimal):
        super().__init__(
            code=PaymentCode.REFUND_EXCEEDS_PAYMENT,
            message=f"退款金额 {refund_amount} 超过可退金额 {available}",
            error_type="RefundExceedsPayment",
            details={"amount": str(refund_amount), "refundable": str(available)},
            field="amount",
        )


class PaymentNotRefundableException(BusinessException):
    """支付不可退款"""
    def __init__(self, status: PaymentStatus):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_REFUNDABLE,
            message=f"支付状态为 {status.value}，不可退款",
            error_type="PaymentNotRefundable",
            details={"status": status.value},
        )


class PaymentDomainService:
    """
    支付领域服务 - 编排支付生命周期

    职责：
    1. 初始化成功后创建支付（(订单ID, 提供商) 唯一）
    2. 应用 verify/status/webhook 结果（幂等）
    3. 退款预留与结算（退款状态始终由已完成退款求和得出）
    4. 产生领域事件

    本服务不调用网关；网关结果由应用层传入。
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        refund_repository: RefundRepository
    ):
        self.payment_repository = payment_repository
        self.refund_repository = refund_repository
        self.events: List = []  # 领域事件收集

    async def _get_payment(self, payment_id: int) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundException(f"id={payment_id}")
        return payment

    async def _get_refund(self, refund_id: int) -> Refund:
        refund = await self.refund_repository.get_by_id(refund_id)
        if not refund:
            raise RefundNotFoundException(f"id={refund_id}")
        return refund

    async def record_initialized(
        self,
        order_id: str,
        provider: str,
        amount: Decimal,
        currency: str,
        payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        gateway_response: Optional[dict] = None,
    ) -> Payment:
        """
        网关初始化成功后创建支付记录，初始状态为 pending

        业务规则：(订单ID, 提供商) 组合唯一
        """
        provider = provider.lower()
        if await self.payment_repository.get_by_order(order_id, provider):
            raise PaymentAlreadyExistsException(order_id, provider)

        now = datetime.now(timezone.utc)
        payment = Payment(
            id=None,
            order_id=order_id,
            provider=provider,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            payment_id=payment_id,
            transaction_id=transaction_id,
            gateway_response=gateway_response or {},
            created_at=now,
            updated_at=now,
        )
        created = await self.payment_repository.create(payment)
        self.events.append(PaymentInitialized(
            order_id=created.order_id,
            provider=created.provider,
            payment_id=created.payment_id,
            amount=str(created.amount),
            currency=created.currency,
        ))
        return created

    async def apply_gateway_status(
        self,
        payment_id: int,
        status: CanonicalStatus,
        *,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        gateway_response: Optional[dict] = None,
    ) -> Payment:
        """
        应用 verify/status/webhook 返回的标准状态

        重复应用同一状态不会重复持久化，也不会重复产生事件。
        """
        payment = await self._get_payment(payment_id)
        changed = payment.apply_status(status, transaction_id=transaction_id, reason=reason)
        if not changed:
            return payment

        if gateway_response:
            payment.gateway_response = gateway_response
        updated = await self.payment_repository.update(payment)

        if updated.status == PaymentStatus.COMPLETED:
            self.events.append(PaymentCompleted(
                order_id=updated.order_id,
                provider=updated.provider,
                payment_id=updated.payment_id,
                transaction_id=updated.transaction_id,
            ))
        elif updated.status == PaymentStatus.FAILED:
            self.events.append(PaymentFailed(
                order_id=updated.order_id,
                provider=updated.provider,
                payment_id=updated.payment_id,
                reason=reason,
            ))
        return updated

    async def mark_payment_failed(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        """调用方重试策略耗尽时标记失败"""
        payment = await self._get_payment(payment_id)
        if not payment.mark_failed(reason):
            return payment
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentFailed(
            order_id=updated.order_id,
            provider=updated.provider,
            payment_id=updated.payment_id,
            reason=reason,
        ))
        return updated

    async def cancel_payment(self, payment_id: int) -> Payment:
        """调用方显式取消（仅限完成前）"""
        payment = await self._get_payment(payment_id)
        if not payment.mark_cancelled():
            return payment
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentCancelled(
            order_id=updated.order_id,
            provider=updated.provider,
            payment_id=updated.payment_id,
        ))
        return updated

    async def refundable_amount(self, payment_id: int) -> Decimal:
        payment = await self._get_payment(payment_id)
        if not payment.can_refund():
            return Decimal("0")
        refunds = await self.refund_repository.list_by_payment(payment_id)
        return payment.calculate_refundable_amount(refunds)

    async def begin_refund(
        self,
        payment_id: int,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> tuple[Payment, Refund]:
        """
        创建待处理退款记录（在调用网关之前）

        业务规则：
        1. 支付必须为 completed 或 partially_refunded
        2. 退款金额不能超过剩余可退金额（扣除处理中的退款）
        """
        payment = await self._get_payment(payment_id)
        if not payment.can_refund():
            raise PaymentNotRefundableException(payment.status)

        amount = Decimal(amount)
        refunds = await self.refund_repository.list_by_payment(payment_id)
        refundable = payment.calculate_refundable_amount(refunds)
        if amount > refundable:
            raise RefundExceedsPaymentException(amount, refundable)

        now = datetime.now(timezone.utc)
        refund = Refund(
            id=None,
            payment_id=payment_id,
            order_id=payment.order_id,
            provider=payment.provider,
            amount=amount,
            currency=payment.currency,
            status=RefundStatus.PENDING,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        created = await self.refund_repository.create(refund)
        return payment, created

    async def complete_refund(
        self,
        refund_id: int,
        gateway_refund_id: Optional[str] = None,
        gateway_response: Optional[dict] = None,
    ) -> tuple[Refund, Payment]:
        """退款成功：标记退款并重新结算支付"""
        refund = await self._get_refund(refund_id)
        changed = refund.mark_completed(gateway_refund_id)
        if changed:
            if gateway_response:
                refund.gateway_response = gateway_response
            refund = await self.refund_repository.update(refund)
        payment = await self._settle(refund.payment_id)
        if changed:
            self.events.append(PaymentRefunded(
                order_id=payment.order_id,
                provider=payment.provider,
                payment_id=payment.payment_id,
                refund_id=refund.refund_id or "",
                amount=str(refund.amount),
                refunded_total=str(payment.refunded_amount),
                fully_refunded=payment.status == PaymentStatus.REFUNDED,
            ))
        return refund, payment

    async def fail_refund(self, refund_id: int, reason: Optional[str] = None) -> tuple[Refund, Payment]:
        """退款失败：释放预留金额，支付状态按已完成退款重新结算"""
        refund = await self._get_refund(refund_id)
        if refund.mark_failed(reason):
            refund = await self.refund_repository.update(refund)
        payment = await self._settle(refund.payment_id)
        return refund, payment

    async def _settle(self, payment_id: int) -> Payment:
        payment = await self._get_payment(payment_id)
        refunds = await self.refund_repository.list_by_payment(payment_id)
        if payment.settle_refunds(refunds):
            payment = await self.payment_repository.update(payment)
        return payment

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
