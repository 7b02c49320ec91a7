"""
Application service orchestrating payment use-cases.

``PaymentOrchestrator`` is the single entry point parameterized by provider
name. Every operation runs in the same order::

    validate -> security pre-checks -> resolve + invoke adapter -> classify -> return

It does not persist anything; callers apply the returned ``PaymentResult``
to the Payment aggregate through ``PaymentDomainService``.

NetworkError is never retried here. Re-dispatching a failed call is a
caller-level (job queue) decision because only the caller knows whether
the operation is idempotent on the provider side.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Awaitable, Mapping, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from application.dtos.payments import PaymentRequest, PaymentResult, RequestContext
from application.ports.payment_gateway import PaymentGateway
from application.services.security_service import SecurityGuard
from application.utils.validation import (
    validate_amount,
    validate_order_id,
    validate_payment_id,
    validate_refund_reason,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    NetworkError,
    SecurityError,
    ValidationError,
)


logger = get_logger(__name__)


class GatewayResolver(Protocol):
    def resolve(self, name: str) -> PaymentGateway: ...


class PaymentOrchestrator:
    def __init__(self, registry: GatewayResolver, security: Optional[SecurityGuard] = None) -> None:
        self.registry = registry
        self.security = security

    # ------------------------------------------------------------------
    # pre-checks
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_request(request: PaymentRequest | Mapping[str, Any], provider: str) -> PaymentRequest:
        if isinstance(request, PaymentRequest):
            return request
        try:
            return PaymentRequest.model_validate(dict(request))
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid payment request: {first.get('msg', 'invalid input')}",
                provider=provider,
                field=field,
            ) from None

    async def _check_rate_limit(self, context: Optional[RequestContext]) -> None:
        if self.security is None or context is None or not context.identifier:
            return
        await self.security.enforce_rate_limit(context.identifier)

    async def _fraud_tags(
        self, provider: str, amount: Decimal, context: Optional[RequestContext]
    ) -> frozenset[str]:
        if self.security is None or context is None or not context.ip:
            return frozenset()
        indicators = await self.security.detect_fraudulent_activity(
            context.ip, {"amount": amount, "user_agent": context.user_agent}
        )
        await self.security.record_payment_attempt(context.ip)
        blocked = self.security.blocking_indicators(indicators)
        if blocked:
            raise SecurityError(
                "Payment request rejected by fraud checks",
                provider=provider,
                details={"indicators": sorted(i.value for i in blocked)},
            )
        return frozenset(i.value for i in indicators)

    # ------------------------------------------------------------------
    # invoke + classify
    # ------------------------------------------------------------------

    async def _invoke(self, operation: str, provider: str, call: Awaitable[PaymentResult]) -> PaymentResult:
        try:
            result = await call
        except NetworkError as exc:
            logger.error(
                "payment_network_error",
                operation=operation,
                provider=provider,
                error=exc.message,
                code=int(exc.code),
            )
            raise
        if not result.success:
            logger.warning(
                "payment_business_rejection",
                operation=operation,
                provider=provider,
                message=result.message,
                http_code=result.http_code,
            )
        else:
            logger.info(
                "payment_operation_completed",
                operation=operation,
                provider=provider,
                payment_id=result.payment_id,
                status=result.status.value,
            )
        return result

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def initialize(
        self,
        provider: str,
        request: PaymentRequest | Mapping[str, Any],
        *,
        context: Optional[RequestContext] = None,
    ) -> PaymentResult:
        request = self._coerce_request(request, provider)
        validate_order_id(request.order_id, provider=provider)
        validate_amount(request.amount, provider=provider)

        await self._check_rate_limit(context)
        tags = await self._fraud_tags(provider, request.amount, context)

        gateway = self.registry.resolve(provider)
        result = await self._invoke("initialize", provider, gateway.initialize_payment(request))
        if tags:
            result = result.model_copy(update={"fraud_indicators": tags})
        return result

    async def verify(
        self, provider: str, payment_id: str, *, context: Optional[RequestContext] = None
    ) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=provider)
        gateway = self.registry.resolve(provider)
        return await self._invoke("verify", provider, gateway.verify_payment(payment_id))

    async def refund(
        self,
        provider: str,
        payment_id: str,
        amount: Decimal | str | float,
        reason: str,
        *,
        refundable_amount: Optional[Decimal] = None,
        context: Optional[RequestContext] = None,
    ) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=provider)
        value = validate_amount(amount, provider=provider)
        reason = validate_refund_reason(reason, provider=provider)
        if refundable_amount is not None and value > refundable_amount:
            raise ValidationError(
                f"Refund amount {value} exceeds refundable amount {refundable_amount}",
                provider=provider,
                field="amount",
                details={"amount": str(value), "refundable": str(refundable_amount)},
            )

        await self._check_rate_limit(context)

        gateway = self.registry.resolve(provider)
        return await self._invoke("refund", provider, gateway.refund_payment(payment_id, value, reason))

    async def status(
        self, provider: str, payment_id: str, *, context: Optional[RequestContext] = None
    ) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=provider)
        gateway = self.registry.resolve(provider)
        return await self._invoke("status", provider, gateway.get_payment_status(payment_id))

    async def handle_webhook(
        self, provider: str, headers: Mapping[str, str], raw_body: bytes | str
    ) -> PaymentResult:
        """Authenticate and normalize an inbound provider notification."""
        gateway = self.registry.resolve(provider)
        if self.security is not None:
            self.security.authenticate_webhook(provider, headers, raw_body)
        else:
            logger.warning("webhook_signature_check_skipped", provider=provider)
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Webhook body is not valid JSON", provider=provider) from None
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object", provider=provider)
        result = gateway.parse_webhook(payload)
        logger.info(
            "payment_webhook_received",
            provider=provider,
            payment_id=result.payment_id,
            status=result.status.value,
        )
        return result
