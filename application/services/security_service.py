"""
支付安全服务 - 限流、风险标记、防篡改哈希、Webhook 签名与敏感字段加密

共享状态（限流计数、快速支付计数、一次性 nonce、IP 信誉列表）全部放在
KeyValueStore 中，多进程部署时必须使用 Redis 实现。
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import string
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import urlencode

from cryptography.fernet import Fernet, InvalidToken

from application.ports.cache import KeyValueStore
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    ConfigurationError,
    RateLimitExceededError,
    TamperDetectedError,
    WebhookSignatureError,
)
from shared.codes.payment_codes import FraudIndicator
from shared.redaction import SENSITIVE_DATA_FIELDS, mask_sensitive_fields


logger = get_logger(__name__)

ENCRYPTED_PLACEHOLDER = "[ENCRYPTED]"

SUSPICIOUS_IPS_KEY = "security:suspicious_ips"
TOR_EXIT_NODES_KEY = "security:tor_exit_nodes"

SECURITY_HEADERS: Mapping[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; frame-ancestors 'none'; object-src 'none'; "
        "base-uri 'self'; form-action 'self'"
    ),
}

_ID_ALPHABET = string.ascii_letters + string.digits


def _hash_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class SecurityGuard:
    """
    支付安全守卫

    - 限流：固定窗口计数器，窗口在首次计数时开启，到期后归零
    - 风险标记：返回建议性标签集合，不做综合评分
    - 防篡改：对报价字段做 SHA-256 摘要，恒定时间比较
    - Webhook：HMAC-SHA256(原始请求体)，配置了密钥则强制校验
    - 加密：Fernet 对敏感字段加解密，解密失败降级为占位符
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: PaymentSettings = payment_settings,
        *,
        clock: Callable[[], float] = time.time,
        log: Any = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._security = settings.security
        self._clock = clock
        self._logger = log or logger
        key = self._security.encryption_key
        self._fernet: Optional[Fernet] = Fernet(key.encode("utf-8")) if key else None

    # ------------------------------------------------------------------
    # 限流与风险标记
    # ------------------------------------------------------------------

    async def check_rate_limit(
        self,
        identifier: str,
        max_attempts: Optional[int] = None,
        window_minutes: Optional[int] = None,
    ) -> bool:
        """记录一次尝试并返回是否仍在限额内"""
        max_attempts = max_attempts if max_attempts is not None else self._security.rate_limit_max_attempts
        window_minutes = window_minutes if window_minutes is not None else self._security.rate_limit_window_minutes
        attempts = await self._store.incr(f"payment_rate_limit:{identifier}", ttl=window_minutes * 60)
        if attempts > max_attempts:
            self._logger.warning(
                "payment_rate_limit_exceeded",
                identifier=identifier,
                attempts=attempts,
                max_attempts=max_attempts,
            )
            return False
        return True

    async def enforce_rate_limit(self, identifier: str) -> None:
        if not await self.check_rate_limit(identifier):
            raise RateLimitExceededError(
                identifier,
                max_attempts=self._security.rate_limit_max_attempts,
                window_minutes=self._security.rate_limit_window_minutes,
            )

    async def record_payment_attempt(self, ip: str) -> int:
        return await self._store.incr(
            f"rapid_payments:{ip}", ttl=self._security.rapid_payment_window_seconds
        )

    async def _listed(self, key: str, ip: str) -> bool:
        listed = await self._store.get(key)
        if not listed:
            return False
        # a bare string is one address, or a comma separated list
        if isinstance(listed, str):
            entries = {part.strip() for part in listed.split(",")}
        else:
            entries = {str(entry).strip() for entry in listed}
        return ip.strip() in entries

    async def _is_suspicious_ip(self, ip: str) -> bool:
        return await self._listed(SUSPICIOUS_IPS_KEY, ip) or await self._listed(TOR_EXIT_NODES_KEY, ip)

    async def _has_rapid_payments(self, ip: str) -> bool:
        attempts = await self._store.get(f"rapid_payments:{ip}")
        return int(attempts or 0) > self._security.rapid_payment_threshold

    def _has_unusual_amount(self, amount: Any) -> bool:
        if amount is None:
            return False
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return True
        return value < self._security.min_amount or value > self._security.max_amount

    def _has_suspicious_user_agent(self, user_agent: Optional[str]) -> bool:
        if not user_agent or not user_agent.strip():
            return True
        lowered = user_agent.lower()
        return any(pattern in lowered for pattern in self._security.suspicious_user_agents)

    async def detect_fraudulent_activity(self, ip: str, request_data: Mapping[str, Any]) -> set[FraudIndicator]:
        """对一次请求做独立检查，每项最多产生一个标签"""
        indicators: set[FraudIndicator] = set()
        if ip and await self._is_suspicious_ip(ip):
            indicators.add(FraudIndicator.SUSPICIOUS_IP)
        if ip and await self._has_rapid_payments(ip):
            indicators.add(FraudIndicator.RAPID_PAYMENTS)
        if self._has_unusual_amount(request_data.get("amount")):
            indicators.add(FraudIndicator.UNUSUAL_AMOUNT)
        if self._has_suspicious_user_agent(request_data.get("user_agent")):
            indicators.add(FraudIndicator.SUSPICIOUS_USER_AGENT)
        if indicators:
            self._logger.warning(
                "payment_fraud_indicators",
                ip=ip,
                indicators=sorted(i.value for i in indicators),
            )
        return indicators

    def blocking_indicators(self, indicators: Iterable[FraudIndicator]) -> set[FraudIndicator]:
        blocked = {str(name).lower() for name in self._security.blocked_fraud_indicators}
        return {i for i in indicators if i.value in blocked}

    # ------------------------------------------------------------------
    # 防篡改哈希
    # ------------------------------------------------------------------

    def _hash_secret(self, secret: Optional[str]) -> str:
        secret = secret or self._security.hash_secret
        if not secret:
            raise ConfigurationError("Payment hash secret is not configured")
        return secret

    def generate_hash(self, data: Mapping[str, Any], secret: Optional[str] = None) -> str:
        secret = self._hash_secret(secret)
        pairs = [
            (key, _hash_value(value))
            for key, value in sorted(data.items())
            if key not in SENSITIVE_DATA_FIELDS and value is not None
        ]
        return hashlib.sha256((urlencode(pairs) + secret).encode("utf-8")).hexdigest()

    def verify_hash(self, data: Mapping[str, Any], hash: str, secret: Optional[str] = None) -> bool:
        expected = self.generate_hash(data, secret)
        return hmac.compare_digest(expected, hash or "")

    @staticmethod
    def _quote_fields(payment: Any) -> dict[str, Any]:
        return {
            "amount": payment.amount,
            "currency": payment.currency,
            "order_id": payment.order_id,
            "provider": payment.provider,
        }

    def quote_payment(self, payment: Any) -> str:
        """为报价生成哈希，客户端提交时原样带回"""
        return self.generate_hash(self._quote_fields(payment))

    def assert_payment_integrity(self, payment: Any, submitted: Mapping[str, Any]) -> None:
        """校验客户端回传的报价哈希、金额与币种，不一致抛 TamperDetectedError"""
        mismatched: list[str] = []
        submitted_hash = submitted.get("payment_hash")
        if submitted_hash is not None and not self.verify_hash(self._quote_fields(payment), str(submitted_hash)):
            mismatched.append("payment_hash")
        if submitted.get("amount") is not None:
            try:
                if Decimal(str(submitted["amount"])) != payment.amount:
                    mismatched.append("amount")
            except (InvalidOperation, ValueError):
                mismatched.append("amount")
        if submitted.get("currency") is not None and str(submitted["currency"]).upper() != payment.currency:
            mismatched.append("currency")
        if mismatched:
            self._logger.warning(
                "payment_tamper_detected",
                order_id=payment.order_id,
                provider=payment.provider,
                fields=mismatched,
            )
            raise TamperDetectedError(
                "Payment data does not match the quoted values",
                provider=payment.provider,
                details={"order_id": payment.order_id, "fields": mismatched},
            )

    # ------------------------------------------------------------------
    # Webhook 签名
    # ------------------------------------------------------------------

    @staticmethod
    def sign_webhook(raw_body: bytes | str, secret: str) -> str:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def verify_webhook(self, raw_body: bytes | str, signature: Optional[str], secret: str) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign_webhook(raw_body, secret), signature.strip())

    def webhook_secret(self, provider: str) -> Optional[str]:
        secrets_map = {k.lower(): v for k, v in self._settings.webhook.secrets.items()}
        return secrets_map.get(provider.lower()) or None

    def authenticate_webhook(self, provider: str, headers: Mapping[str, str], raw_body: bytes | str) -> bool:
        """
        校验 Webhook 签名

        返回 True 表示已校验通过；False 表示该渠道未配置密钥，已跳过校验。
        配置了密钥但签名缺失或不匹配时抛出 WebhookSignatureError。
        """
        secret = self.webhook_secret(provider)
        if secret is None:
            self._logger.warning("webhook_signature_check_skipped", provider=provider)
            return False
        header = self._settings.webhook.signature_header.lower()
        signature = next((v for k, v in headers.items() if k.lower() == header), None)
        if not signature:
            self._logger.warning("webhook_signature_missing", provider=provider)
            raise WebhookSignatureError("Missing webhook signature", provider=provider)
        if not self.verify_webhook(raw_body, signature, secret):
            self._logger.warning("webhook_signature_mismatch", provider=provider)
            raise WebhookSignatureError("Invalid webhook signature", provider=provider)
        return True

    # ------------------------------------------------------------------
    # 敏感字段加密与脱敏
    # ------------------------------------------------------------------

    def encrypt_sensitive_data(self, data: Mapping[str, Any]) -> dict[str, Any]:
        if self._fernet is None:
            raise ConfigurationError("Payment encryption key is not configured")
        encrypted = dict(data)
        for field in SENSITIVE_DATA_FIELDS:
            value = data.get(field)
            if value not in (None, ""):
                encrypted[field] = self._fernet.encrypt(str(value).encode("utf-8")).decode("ascii")
        return encrypted

    def decrypt_sensitive_data(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """解密敏感字段；密文损坏或密钥不符时替换为占位符并记录告警"""
        decrypted = dict(data)
        for field in SENSITIVE_DATA_FIELDS:
            value = data.get(field)
            if value in (None, ""):
                continue
            if self._fernet is None:
                self._logger.warning("payment_field_decrypt_failed", field=field, error="no encryption key")
                decrypted[field] = ENCRYPTED_PLACEHOLDER
                continue
            try:
                decrypted[field] = self._fernet.decrypt(str(value).encode("utf-8")).decode("utf-8")
            except (InvalidToken, UnicodeError) as exc:
                self._logger.warning("payment_field_decrypt_failed", field=field, error=exc.__class__.__name__)
                decrypted[field] = ENCRYPTED_PLACEHOLDER
        return decrypted

    @staticmethod
    def sanitize_for_logging(data: Mapping[str, Any]) -> dict[str, Any]:
        return mask_sensitive_fields(data)

    # ------------------------------------------------------------------
    # 标识符与 nonce
    # ------------------------------------------------------------------

    def _secure_id(self, prefix: str, length: int) -> str:
        random_part = "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
        return f"{prefix}_{int(self._clock())}_{random_part}".upper()

    def generate_transaction_id(self, prefix: str = "TXN") -> str:
        return self._secure_id(prefix, 16)

    def generate_reference_id(self, prefix: str = "REF") -> str:
        return self._secure_id(prefix, 12)

    @staticmethod
    def generate_nonce() -> str:
        return secrets.token_hex(16)

    async def store_nonce(self, nonce: str, ttl: Optional[int] = None) -> None:
        await self._store.set(f"payment_nonce:{nonce}", True, ttl=ttl or self._security.nonce_ttl_seconds)

    async def consume_nonce(self, nonce: str) -> bool:
        """一次性消费 nonce，第二次调用返回 False"""
        return await self._store.pop(f"payment_nonce:{nonce}") is not None

    @staticmethod
    def security_headers() -> dict[str, str]:
        return dict(SECURITY_HEADERS)
