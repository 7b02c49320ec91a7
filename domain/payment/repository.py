"""
支付仓储接口 - 定义支付数据访问的抽象接口

持久化由外部协作者实现；状态转换可能被重复应用（webhook 至少投递一次），
实现方需要在 (order_id, provider) 上保证唯一。
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Payment, Refund, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_order(self, order_id: str, provider: str) -> Optional[Payment]:
        """根据 (订单ID, 提供商) 获取支付"""
        pass

    @abstractmethod
    async def get_by_gateway_payment_id(self, provider: str, payment_id: str) -> Optional[Payment]:
        """根据渠道支付ID获取支付"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        statuses: List[PaymentStatus],
        skip: int = 0,
        limit: int = 100
    ) -> List[Payment]:
        """根据状态获取支付列表（供调用方的异步复核任务使用）"""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        pass


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        pass

    @abstractmethod
    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        """根据ID获取退款"""
        pass

    @abstractmethod
    async def list_by_payment(self, payment_id: int) -> List[Refund]:
        """获取支付的全部退款记录"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """更新退款记录"""
        pass
