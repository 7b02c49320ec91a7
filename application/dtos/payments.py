"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.codes.payment_codes import CanonicalStatus


class PaymentRequest(BaseModel):
    """Caller input for ``initialize``.

    Types are coerced here; business rules (order id shape, amount > 0,
    currency per provider) are checked by the orchestrator and adapters so
    they surface as ``ValidationError``.
    """

    order_id: str
    amount: Decimal
    currency: Optional[str] = None
    callback_url: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    notify_url: Optional[str] = None
    description: Optional[str] = None
    customer: dict[str, Any] = Field(default_factory=dict)

    @field_validator("order_id", mode="before")
    @classmethod
    def _strip_order_id(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else None


class PaymentResult(BaseModel):
    """Immutable outcome of every adapter operation.

    ``success=False`` is a business rejection reported by the provider;
    infrastructure failures are raised instead.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    payment_id: Optional[str] = None
    redirect_url: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: CanonicalStatus = CanonicalStatus.UNKNOWN
    http_code: Optional[int] = None
    fraud_indicators: frozenset[str] = frozenset()

    @classmethod
    def ok(cls, message: str = "OK", **kwargs: Any) -> "PaymentResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def failed(cls, message: str, **kwargs: Any) -> "PaymentResult":
        # status stays UNKNOWN unless the provider said the payment itself failed
        return cls(success=False, message=message, **kwargs)


class ProviderToken(BaseModel):
    """Session credential held by a TokenCache; ``expires_at`` is epoch seconds."""

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: float


class RequestContext(BaseModel):
    """Caller-side facts used by the security pre-checks."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        if self.user_id:
            return f"user:{self.user_id}"
        if self.ip:
            return f"ip:{self.ip}"
        return None
