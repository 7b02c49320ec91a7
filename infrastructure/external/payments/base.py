"""
Base payment client implementing shared concerns: config validation, http,
input validation, token caching, logging and status mapping.

Concrete providers subclass and implement ``_initialize``, ``_verify`` and
``_refund`` (plus ``_status`` / ``_fetch_token`` where the provider has them).

No retry happens here: a NetworkError goes straight back to the
caller, whose job queue decides whether to re-dispatch.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Callable, ClassVar, Mapping, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.logging_config import get_logger
from core.settings import payment_settings
from application.dtos.payments import PaymentRequest, PaymentResult, ProviderToken
from application.utils.validation import (
    validate_amount,
    validate_amount_precision,
    validate_currency,
    validate_order_id,
    validate_payment_id,
    validate_refund_reason,
)
from domain.common.exceptions import ConfigurationError, NetworkError, ValidationError
from infrastructure.external.payments.token_cache import TokenCache
from shared.codes.payment_codes import (
    CanonicalStatus,
    PaymentCode,
    PROVIDER_STATUS_TO_CANONICAL,
    REFUND_STATUS_TO_CANONICAL,
)
from shared.redaction import redact_config


logger = get_logger(__name__)


class BasePaymentClient:
    provider: ClassVar[str] = "base"
    display_name: ClassVar[str] = "Base"
    required_config: ClassVar[tuple[str, ...]] = ()
    supported_currencies: ClassVar[frozenset[str]] = frozenset()
    default_currency: ClassVar[str] = "BDT"
    sandbox_base_url: ClassVar[str] = ""
    production_base_url: ClassVar[str] = ""
    uses_token: ClassVar[bool] = False
    amount_places: ClassVar[int] = 2
    # Currencies without a minor unit on this provider
    zero_decimal_currencies: ClassVar[frozenset[str]] = frozenset()

    # Webhook body fields read by the default parse_webhook
    webhook_id_field: ClassVar[str] = "payment_id"
    webhook_status_field: ClassVar[str] = "status"
    webhook_transaction_field: ClassVar[Optional[str]] = "transaction_id"
    webhook_amount_field: ClassVar[Optional[str]] = "amount"

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeouts: Optional[dict[str, float]] = None,
        token_safety_margin: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config: dict[str, Any] = dict(config or {})
        self._validate_config()
        self.sandbox = bool(self.config.get("sandbox", True))
        self.base_url = (
            self.config.get("base_url")
            or (self.sandbox_base_url if self.sandbox else self.production_base_url)
        ).rstrip("/")
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._token_cache: Optional[TokenCache] = None
        if self.uses_token:
            margin = payment_settings.token_safety_margin if token_safety_margin is None else token_safety_margin
            self._token_cache = TokenCache(
                self._fetch_token,
                provider=self.provider,
                safety_margin=margin,
                clock=clock,
            )

    # ------------------------------------------------------------------
    # configuration
    # ------------------------------------------------------------------

    def _missing_config(self) -> list[str]:
        missing = []
        for key in self.required_config:
            value = self.config.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(key)
        return missing

    def _validate_config(self) -> None:
        missing = self._missing_config()
        if missing:
            raise ConfigurationError(
                f"{self.display_name} configuration incomplete: missing {', '.join(missing)}",
                provider=self.provider,
                details={"missing": missing, "config": redact_config(self.config)},
            )

    def is_configured(self) -> bool:
        return not self._missing_config()

    def get_gateway_name(self) -> str:
        return self.display_name

    @property
    def token_cache(self) -> Optional[TokenCache]:
        return self._token_cache

    # ------------------------------------------------------------------
    # http
    # ------------------------------------------------------------------

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        yield self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, dict[str, Any]]:
        """Send one request and return ``(http_status, json_body)``.

        Transport errors, timeouts and bodies that are not a JSON object raise
        NetworkError; any parsed body (including 4xx/5xx) is returned for the
        adapter to classify.
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeouts)
        try:
            async with self.client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"{self.display_name} request timed out",
                provider=self.provider,
                code=PaymentCode.TIMEOUT,
                details={"path": path},
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"{self.display_name} request failed: {exc.__class__.__name__}",
                provider=self.provider,
                details={"path": path},
            ) from exc

        if not response.content:
            if response.status_code >= 500:
                raise NetworkError(
                    f"{self.display_name} returned an empty {response.status_code} response",
                    provider=self.provider,
                    code=PaymentCode.INVALID_RESPONSE,
                    details={"path": path, "http_code": response.status_code},
                )
            return response.status_code, {}
        try:
            body = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"{self.display_name} returned an unparsable response",
                provider=self.provider,
                code=PaymentCode.INVALID_RESPONSE,
                details={"path": path, "http_code": response.status_code},
            ) from exc
        if not isinstance(body, dict):
            raise NetworkError(
                f"{self.display_name} returned an unexpected response shape",
                provider=self.provider,
                code=PaymentCode.INVALID_RESPONSE,
                details={"path": path, "http_code": response.status_code},
            )
        return response.status_code, body

    async def _access_token(self) -> str:
        if self._token_cache is None:
            raise ConfigurationError(f"{self.display_name} does not use session tokens", provider=self.provider)
        return await self._token_cache.ensure_valid()

    async def _fetch_token(self) -> ProviderToken:
        raise NotImplementedError

    def _token_from(self, value: Any, expires_in: Any, default_ttl: int = 3600) -> ProviderToken:
        try:
            ttl = float(expires_in) if expires_in is not None else float(default_ttl)
        except (TypeError, ValueError):
            ttl = float(default_ttl)
        return ProviderToken(value=str(value or ""), expires_at=self._clock() + ttl)

    # ------------------------------------------------------------------
    # uniform operations
    # ------------------------------------------------------------------

    def _coerce_request(self, request: PaymentRequest | Mapping[str, Any]) -> PaymentRequest:
        if isinstance(request, PaymentRequest):
            return request
        try:
            return PaymentRequest.model_validate(dict(request))
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid payment request: {first.get('msg', 'invalid input')}",
                provider=self.provider,
                field=field,
            ) from None

    def validate_request(self, request: PaymentRequest) -> str:
        """Check the request against this provider and return the currency to use."""
        validate_order_id(request.order_id, provider=self.provider)
        value = validate_amount(request.amount, provider=self.provider)
        currency = validate_currency(
            request.currency or self.default_currency,
            self.supported_currencies,
            provider=self.provider,
        )
        validate_amount_precision(value, self.amount_places_for(currency), provider=self.provider)
        return currency

    async def initialize_payment(self, request: PaymentRequest | Mapping[str, Any]) -> PaymentResult:
        request = self._coerce_request(request)
        currency = self.validate_request(request)
        self._log(
            "payment_initialize_request",
            order_id=request.order_id,
            amount=str(request.amount),
            currency=currency,
        )
        result = await self._initialize(request, currency)
        self._log(
            "payment_initialize_response",
            order_id=request.order_id,
            success=result.success,
            status=result.status.value,
            payment_id=result.payment_id,
        )
        return result

    async def verify_payment(self, payment_id: str) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=self.provider)
        self._log("payment_verify_request", payment_id=payment_id)
        result = await self._verify(payment_id)
        self._log("payment_verify_response", payment_id=payment_id, success=result.success, status=result.status.value)
        return result

    async def refund_payment(self, payment_id: str, amount: Decimal | str | float, reason: str) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=self.provider)
        value = validate_amount(amount, provider=self.provider)
        validate_amount_precision(value, self.amount_places, provider=self.provider)
        reason = validate_refund_reason(reason, provider=self.provider)
        self._log("payment_refund_request", payment_id=payment_id, amount=str(value))
        result = await self._refund(payment_id, value, reason)
        self._log("payment_refund_response", payment_id=payment_id, success=result.success, status=result.status.value)
        return result

    async def get_payment_status(self, payment_id: str) -> PaymentResult:
        payment_id = validate_payment_id(payment_id, provider=self.provider)
        return await self._status(payment_id)

    def parse_webhook(self, payload: Mapping[str, Any]) -> PaymentResult:
        """Normalize an authenticated webhook body.

        Signature checks happen before this is called; see SecurityGuard.
        """
        payment_id = payload.get(self.webhook_id_field)
        if not payment_id:
            raise ValidationError(
                f"Webhook payload is missing {self.webhook_id_field}",
                provider=self.provider,
                field=self.webhook_id_field,
            )
        raw_status = payload.get(self.webhook_status_field)
        return PaymentResult.ok(
            "Webhook received",
            data=dict(payload),
            payment_id=str(payment_id),
            transaction_id=self._opt_str(payload.get(self.webhook_transaction_field)) if self.webhook_transaction_field else None,
            amount=self._opt_decimal(payload.get(self.webhook_amount_field)) if self.webhook_amount_field else None,
            status=self._map_status(raw_status),
        )

    # Provider hooks
    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        raise NotImplementedError

    async def _verify(self, payment_id: str) -> PaymentResult:
        raise NotImplementedError

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        raise NotImplementedError

    async def _status(self, payment_id: str) -> PaymentResult:
        return await self._verify(payment_id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @property
    def status_map(self) -> Mapping[str, CanonicalStatus]:
        return PROVIDER_STATUS_TO_CANONICAL.get(self.provider, {})

    def _map_status(self, provider_status: Any) -> CanonicalStatus:
        if provider_status is None:
            return CanonicalStatus.UNKNOWN
        return self.status_map.get(str(provider_status).strip().upper(), CanonicalStatus.UNKNOWN)

    def amount_places_for(self, currency: Optional[str]) -> int:
        if currency and currency.upper() in self.zero_decimal_currencies:
            return 0
        return self.amount_places

    def _money(self, amount: Decimal, places: Optional[int] = None) -> str:
        """Pad a validated amount to the provider's scale; never rounds."""
        places = self.amount_places if places is None else places
        return format(amount.quantize(Decimal(1).scaleb(-places)), "f")

    @property
    def refund_status_map(self) -> Mapping[str, CanonicalStatus]:
        return REFUND_STATUS_TO_CANONICAL.get(self.provider, {})

    def _map_refund_status(self, provider_status: Any) -> CanonicalStatus:
        if provider_status is None:
            return CanonicalStatus.UNKNOWN
        return self.refund_status_map.get(str(provider_status).strip().upper(), CanonicalStatus.UNKNOWN)

    @staticmethod
    def _opt_str(value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    @staticmethod
    def _opt_decimal(value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except ArithmeticError:
            return None

    def _rejection(
        self,
        message: Any,
        body: Mapping[str, Any],
        http_code: Optional[int],
        *,
        status: CanonicalStatus = CanonicalStatus.UNKNOWN,
        **kwargs: Any,
    ) -> PaymentResult:
        text = str(message or f"{self.display_name} rejected the request")
        logger.warning(
            "payment_provider_rejected",
            provider=self.provider,
            message=text,
            http_code=http_code,
        )
        return PaymentResult.failed(text, data=dict(body), http_code=http_code, status=status, **kwargs)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
