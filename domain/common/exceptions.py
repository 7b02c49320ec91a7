"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

Gateway taxonomy:

- ConfigurationError: missing/invalid credentials or unknown provider; fatal.
- ValidationError: malformed caller input, raised before any network call.
- NetworkError: transport failure, timeout or unparsable upstream body.
  Retryable, but only by a caller-level policy.
- SecurityError: signature/tamper mismatch or rate limit; hard reject.

Provider business rejections are *not* exceptions; adapters return them as
``PaymentResult(success=False)``.
"""
from __future__ import annotations

from typing import Any, Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from shared.redaction import redact_config


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class PaymentGatewayError(BusinessException):
    """Base for every exception raised by the gateway core.

    ``details`` is redacted on the way in so handlers can log it as-is.
    """

    retryable: bool = False
    default_code: int = PaymentCode.GATEWAY_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        field: Optional[str] = None,
    ) -> None:
        full_details: dict[str, Any] = {}
        if provider:
            full_details["provider"] = provider
        if details:
            full_details.update(redact_config(details))
        self.provider = provider
        super().__init__(
            code=code if code is not None else self.default_code,
            message=message,
            error_type=type(self).__name__,
            details=full_details or None,
            field=field,
        )


class ConfigurationError(PaymentGatewayError):
    default_code = PaymentCode.CONFIGURATION_ERROR


class ValidationError(PaymentGatewayError):
    default_code = PaymentCode.VALIDATION_ERROR


class NetworkError(PaymentGatewayError):
    retryable = True
    default_code = PaymentCode.NETWORK_ERROR


class SecurityError(PaymentGatewayError):
    default_code = PaymentCode.SECURITY_ERROR


class RateLimitExceededError(SecurityError):
    default_code = PaymentCode.RATE_LIMITED

    def __init__(self, identifier: str, *, max_attempts: int, window_minutes: int):
        super().__init__(
            "Too many payment attempts, please try again later",
            details={
                "identifier": identifier,
                "max_attempts": max_attempts,
                "window_minutes": window_minutes,
            },
        )


class WebhookSignatureError(SecurityError):
    default_code = PaymentCode.SIGNATURE_ERROR


class TamperDetectedError(SecurityError):
    default_code = PaymentCode.TAMPER_DETECTED
