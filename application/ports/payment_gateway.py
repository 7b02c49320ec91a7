"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import PaymentRequest, PaymentResult


# Members every adapter must expose; the registry checks these on registration.
GATEWAY_CONTRACT: tuple[str, ...] = (
    "initialize_payment",
    "verify_payment",
    "refund_payment",
    "get_payment_status",
    "get_gateway_name",
    "is_configured",
    "parse_webhook",
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations validate their configuration on construction, validate
    input before touching the network, return provider rejections as
    ``PaymentResult(success=False)`` and raise ``NetworkError`` only for
    transport problems.
    """

    provider: str

    async def initialize_payment(self, request: PaymentRequest) -> PaymentResult: ...

    async def verify_payment(self, payment_id: str) -> PaymentResult: ...

    async def refund_payment(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult: ...

    async def get_payment_status(self, payment_id: str) -> PaymentResult: ...

    def get_gateway_name(self) -> str: ...

    def is_configured(self) -> bool: ...

    def parse_webhook(self, payload: dict[str, Any]) -> PaymentResult: ...
