"""
支付领域实体 - 支付聚合根与状态机
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from enum import Enum

from domain.common.exceptions import BusinessException, DomainValidationException
from shared.codes.payment_codes import CanonicalStatus, PaymentCode


ORDER_ID_MAX_LENGTH = 50
REFUND_REASON_MAX_LENGTH = 255


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"           # 待支付
    PROCESSING = "processing"     # 处理中（渠道已受理，等待异步确认）
    COMPLETED = "completed"       # 支付成功
    FAILED = "failed"             # 支付失败
    CANCELLED = "cancelled"       # 已取消
    REFUNDED = "refunded"         # 已退款
    PARTIALLY_REFUNDED = "partially_refunded"  # 部分退款


class RefundStatus(str, Enum):
    """退款状态枚举"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# 已完成（或已越过完成）的状态：重复的 completed 事件在这些状态上是 no-op
_SETTLED = (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED)
_OPEN = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class InvalidStateTransitionException(BusinessException):
    """非法状态转换"""
    def __init__(self, current: PaymentStatus, target: str):
        super().__init__(
            code=PaymentCode.INVALID_STATE_TRANSITION,
            message=f"无法从状态 {current.value} 转换为 {target}",
            error_type="InvalidStateTransition",
            details={"current": current.value, "target": target},
            field="status",
        )


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根 - 管理支付生命周期

    业务规则：
    1. 订单ID + 提供商组合必须唯一（由仓储保证）
    2. 金额必须大于0
    3. 状态转换必须遵循状态机，且重复应用同一事件是 no-op（webhook 至少投递一次）
    4. 已退款金额 0 <= refunded_amount <= amount，且单调不减
    5. 退款状态只能由已完成退款记录求和得出
    """

    id: Optional[int]
    order_id: str
    provider: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None       # 渠道支付ID
    transaction_id: Optional[str] = None   # 渠道交易流水号

    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))

    gateway_response: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        self.amount = Decimal(self.amount)
        self.refunded_amount = Decimal(self.refunded_amount)
        self._validate_order_id()
        self._validate_amount()
        self._validate_currency()
        self._normalize_timestamps()
        if self.gateway_response is None:
            self.gateway_response = {}

    def _validate_order_id(self) -> None:
        if not self.order_id or len(self.order_id) > ORDER_ID_MAX_LENGTH:
            raise DomainValidationException(
                f"订单ID不能为空且长度不超过 {ORDER_ID_MAX_LENGTH}: {self.order_id!r}",
                field="order_id",
            )

    def _validate_amount(self) -> None:
        """业务规则：金额必须大于0，已退款金额在 [0, amount] 内"""
        if self.amount <= 0:
            raise DomainValidationException(
                f"支付金额必须大于0: {self.amount}",
                field="amount"
            )
        if self.refunded_amount < 0 or self.refunded_amount > self.amount:
            raise DomainValidationException(
                f"已退款金额越界: {self.refunded_amount}",
                field="refunded_amount"
            )

    def _validate_currency(self) -> None:
        """业务规则：货币代码为 3-5 位字母（含 USDT 等数字货币）"""
        if not self.currency or not (3 <= len(self.currency) <= 5) or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency"
            )
        self.currency = self.currency.upper()

    def _normalize_timestamps(self) -> None:
        """规范化所有时间戳为 UTC"""
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.cancelled_at = _ensure_utc(self.cancelled_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    # ------------------------------------------------------------------
    # 状态转换（全部幂等：返回 True 表示发生了转换，False 表示 no-op）
    # ------------------------------------------------------------------

    def mark_processing(self) -> bool:
        """pending -> processing"""
        if self.status == PaymentStatus.PROCESSING or self.status in _SETTLED:
            return False
        if self.status != PaymentStatus.PENDING:
            raise InvalidStateTransitionException(self.status, PaymentStatus.PROCESSING.value)
        self.status = PaymentStatus.PROCESSING
        self.updated_at = _now()
        return True

    def mark_completed(self, transaction_id: Optional[str] = None) -> bool:
        """pending|processing -> completed"""
        if self.status in _SETTLED:
            return False
        if self.status not in _OPEN:
            raise InvalidStateTransitionException(self.status, PaymentStatus.COMPLETED.value)
        self.status = PaymentStatus.COMPLETED
        if transaction_id:
            self.transaction_id = transaction_id
        self.paid_at = _now()
        self.updated_at = self.paid_at
        self.failure_reason = None
        return True

    def mark_failed(self, reason: Optional[str] = None) -> bool:
        """
        pending|processing -> failed

        也用于调用方重试策略耗尽后的终止。
        """
        if self.status == PaymentStatus.FAILED:
            return False
        if self.status not in _OPEN:
            raise InvalidStateTransitionException(self.status, PaymentStatus.FAILED.value)
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.updated_at = _now()
        return True

    def mark_cancelled(self) -> bool:
        """
        取消支付

        业务规则：只能由调用方在完成前显式取消
        """
        if self.status == PaymentStatus.CANCELLED:
            return False
        if self.status not in _OPEN:
            raise InvalidStateTransitionException(self.status, PaymentStatus.CANCELLED.value)
        self.status = PaymentStatus.CANCELLED
        self.cancelled_at = _now()
        self.updated_at = self.cancelled_at
        return True

    def apply_status(
        self,
        status: CanonicalStatus,
        *,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """应用 verify/status/webhook 返回的标准状态。

        refunded 由退款结算驱动，这里不处理；unknown 永远是 no-op。
        """
        status = CanonicalStatus(status)
        if status == CanonicalStatus.PENDING:
            if self.status == PaymentStatus.PENDING:
                return self.mark_processing()
            return False
        if status == CanonicalStatus.COMPLETED:
            return self.mark_completed(transaction_id)
        if status == CanonicalStatus.FAILED:
            if self.status in _SETTLED:
                raise InvalidStateTransitionException(self.status, PaymentStatus.FAILED.value)
            return self.mark_failed(reason)
        return False

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------

    def can_refund(self) -> bool:
        """检查是否可以退款"""
        return (
            self.status in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)
            and self.refunded_amount < self.amount
        )

    def calculate_refundable_amount(self, refunds: Iterable["Refund"] = ()) -> Decimal:
        """计算可退款金额：原金额 - 已完成退款 - 处理中退款"""
        in_flight = sum(
            (r.amount for r in refunds if r.status in (RefundStatus.PENDING, RefundStatus.PROCESSING)),
            Decimal("0"),
        )
        return max(self.amount - self.refunded_amount - in_flight, Decimal("0"))

    def settle_refunds(self, refunds: Iterable["Refund"]) -> bool:
        """
        按已完成退款记录重新计算退款金额与状态

        业务规则：
        1. refunded_amount 始终等于已完成退款之和，不做增量累加
        2. 求和结果不得小于已记录值（单调不减），也不得超过原金额
        """
        if self.status not in _SETTLED:
            raise InvalidStateTransitionException(self.status, "refund_settlement")

        total = sum(
            (r.amount for r in refunds if r.status == RefundStatus.COMPLETED),
            Decimal("0"),
        )
        if total < self.refunded_amount:
            raise DomainValidationException(
                f"退款合计 {total} 小于已记录退款金额 {self.refunded_amount}",
                field="refunded_amount",
            )
        if total > self.amount:
            raise DomainValidationException(
                f"退款合计 {total} 超过支付金额 {self.amount}",
                field="refunded_amount",
            )

        if total >= self.amount:
            new_status = PaymentStatus.REFUNDED
        elif total > 0:
            new_status = PaymentStatus.PARTIALLY_REFUNDED
        else:
            new_status = PaymentStatus.COMPLETED

        if total == self.refunded_amount and new_status == self.status:
            return False
        self.refunded_amount = total
        self.status = new_status
        self.updated_at = _now()
        if new_status == PaymentStatus.REFUNDED:
            self.refunded_at = self.updated_at
        return True

    def is_final_status(self) -> bool:
        """检查是否为终态"""
        return self.status in (
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.REFUNDED,
        )


@dataclass
class Refund:
    """
    退款实体 - Payment 聚合的一部分

    业务规则：
    1. 退款金额必须大于0
    2. 同一笔支付可以多次部分退款
    3. 退款原因不超过 255 个字符
    """

    id: Optional[int]
    payment_id: int
    order_id: str  # 冗余，便于查询
    provider: str
    amount: Decimal
    currency: str
    status: RefundStatus = RefundStatus.PENDING
    reason: Optional[str] = None
    refund_id: Optional[str] = None  # 渠道退款ID
    gateway_response: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        self.amount = Decimal(self.amount)
        if self.amount <= 0:
            raise DomainValidationException(
                f"退款金额必须大于0: {self.amount}",
                field="amount"
            )
        if self.reason and len(self.reason) > REFUND_REASON_MAX_LENGTH:
            raise DomainValidationException(
                f"退款原因不能超过 {REFUND_REASON_MAX_LENGTH} 个字符",
                field="reason"
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.failed_at = _ensure_utc(self.failed_at)
        if self.gateway_response is None:
            self.gateway_response = {}

    def mark_processing(self) -> bool:
        """标记为处理中"""
        if self.status == RefundStatus.PROCESSING:
            return False
        if self.status != RefundStatus.PENDING:
            raise DomainValidationException(
                f"无法从状态 {self.status.value} 转换为 processing",
                field="status"
            )
        self.status = RefundStatus.PROCESSING
        self.updated_at = _now()
        return True

    def mark_completed(self, refund_id: Optional[str] = None) -> bool:
        """标记退款成功"""
        if self.status == RefundStatus.COMPLETED:
            return False
        if self.status not in (RefundStatus.PENDING, RefundStatus.PROCESSING):
            raise DomainValidationException(
                f"无法从状态 {self.status.value} 转换为 completed",
                field="status"
            )
        self.status = RefundStatus.COMPLETED
        if refund_id:
            self.refund_id = refund_id
        self.completed_at = _now()
        self.updated_at = self.completed_at
        self.failure_reason = None
        return True

    def mark_failed(self, reason: Optional[str] = None) -> bool:
        """标记退款失败"""
        if self.status == RefundStatus.FAILED:
            return False
        if self.status not in (RefundStatus.PENDING, RefundStatus.PROCESSING):
            raise DomainValidationException(
                f"无法从状态 {self.status.value} 转换为 failed",
                field="status"
            )
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self.failed_at = _now()
        self.updated_at = self.failed_at
        return True
