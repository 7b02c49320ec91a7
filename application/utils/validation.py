"""Input checks shared by the orchestrator and the gateway adapters.

Every failure is a ValidationError raised before any network call.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from domain.common.exceptions import ValidationError
from domain.payment.entity import ORDER_ID_MAX_LENGTH, REFUND_REASON_MAX_LENGTH

PAYMENT_ID_MAX_LENGTH = 100
_ORDER_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_order_id(order_id: Any, *, provider: Optional[str] = None) -> str:
    if not isinstance(order_id, str) or not order_id.strip():
        raise ValidationError("Order ID is required", provider=provider, field="order_id")
    order_id = order_id.strip()
    if len(order_id) > ORDER_ID_MAX_LENGTH:
        raise ValidationError(
            f"Order ID must be at most {ORDER_ID_MAX_LENGTH} characters",
            provider=provider,
            field="order_id",
        )
    if not _ORDER_ID_RE.match(order_id):
        raise ValidationError(
            "Order ID may contain only letters, digits, '-' and '_'",
            provider=provider,
            field="order_id",
        )
    return order_id


def validate_amount(amount: Any, *, provider: Optional[str] = None, field: str = "amount") -> Decimal:
    if isinstance(amount, bool) or amount is None:
        raise ValidationError("Amount must be numeric", provider=provider, field=field)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be numeric", provider=provider, field=field) from None
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero", provider=provider, field=field)
    return value


def validate_amount_precision(
    amount: Decimal, places: int, *, provider: Optional[str] = None, field: str = "amount"
) -> Decimal:
    """Reject amounts the provider cannot represent without rounding."""
    try:
        exact = amount.quantize(Decimal(1).scaleb(-places)) == amount
    except InvalidOperation:
        exact = False
    if not exact:
        raise ValidationError(
            f"Amount must have at most {places} decimal places",
            provider=provider,
            field=field,
            details={"amount": str(amount), "decimal_places": places},
        )
    return amount


def validate_currency(currency: Optional[str], allowed: Iterable[str], *, provider: Optional[str] = None) -> str:
    allowed = {c.upper() for c in allowed}
    code = (currency or "").strip().upper()
    if code not in allowed:
        raise ValidationError(
            f"Currency {currency!r} is not supported",
            provider=provider,
            field="currency",
            details={"supported": sorted(allowed)},
        )
    return code


def validate_payment_id(payment_id: Any, *, provider: Optional[str] = None) -> str:
    if not isinstance(payment_id, str) or not payment_id.strip():
        raise ValidationError("Payment ID is required", provider=provider, field="payment_id")
    payment_id = payment_id.strip()
    if len(payment_id) > PAYMENT_ID_MAX_LENGTH:
        raise ValidationError(
            f"Payment ID must be at most {PAYMENT_ID_MAX_LENGTH} characters",
            provider=provider,
            field="payment_id",
        )
    return payment_id


def validate_refund_reason(reason: Any, *, provider: Optional[str] = None) -> str:
    if reason is None or (isinstance(reason, str) and not reason.strip()):
        raise ValidationError("Refund reason is required", provider=provider, field="reason")
    reason = str(reason).strip()
    if len(reason) > REFUND_REASON_MAX_LENGTH:
        raise ValidationError(
            f"Refund reason must be at most {REFUND_REASON_MAX_LENGTH} characters",
            provider=provider,
            field="reason",
        )
    return reason
