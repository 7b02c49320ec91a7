"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Provider blocks are read by the gateway registry, e.g.
``BKASH__APP_KEY=...`` or ``PAYPAL__SANDBOX=false``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 10.0
    read: float = 30.0
    write: float = 30.0
    total: float = 30.0


class SecuritySettings(BaseModel):
    rate_limit_max_attempts: int = 5
    rate_limit_window_minutes: int = 15
    rapid_payment_threshold: int = 10
    rapid_payment_window_seconds: int = 300
    min_amount: Decimal = Decimal("0.01")
    max_amount: Decimal = Decimal("10000")
    hash_secret: Optional[str] = None
    encryption_key: Optional[str] = None  # urlsafe base64 Fernet key
    nonce_ttl_seconds: int = 1800
    suspicious_user_agents: list[str] = Field(
        default_factory=lambda: [
            "bot", "crawler", "spider", "scraper", "curl", "wget",
            "python", "php", "java", "perl", "ruby",
        ]
    )
    # Fraud tags that turn into a hard rejection; empty means advisory only
    blocked_fraud_indicators: list[str] = Field(default_factory=list)


class WebhookSettings(BaseModel):
    signature_header: str = "X-Webhook-Signature"
    secrets: dict[str, str] = Field(default_factory=dict)  # provider -> shared secret


class BkashSettings(BaseModel):
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class NagadSettings(BaseModel):
    merchant_id: Optional[str] = None
    merchant_private_key: Optional[str] = None
    nagad_public_key: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class BinanceSettings(BaseModel):
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class PaypalSettings(BaseModel):
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    brand_name: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class SslcommerzSettings(BaseModel):
    store_id: Optional[str] = None
    store_password: Optional[str] = None
    api_key: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class ShurjopaySettings(BaseModel):
    merchant_id: Optional[str] = None
    merchant_password: Optional[str] = None
    api_key: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class SurecashSettings(BaseModel):
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    merchant_id: Optional[str] = None
    sandbox: bool = True
    base_url: Optional[str] = None  # overrides the sandbox/production endpoint


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="bkash", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    token_safety_margin: int = 60
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    bkash: BkashSettings = Field(default_factory=BkashSettings)
    nagad: NagadSettings = Field(default_factory=NagadSettings)
    binance: BinanceSettings = Field(default_factory=BinanceSettings)
    paypal: PaypalSettings = Field(default_factory=PaypalSettings)
    sslcommerz: SslcommerzSettings = Field(default_factory=SslcommerzSettings)
    shurjopay: ShurjopaySettings = Field(default_factory=ShurjopaySettings)
    surecash: SurecashSettings = Field(default_factory=SurecashSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    def provider_config(self, name: str) -> Optional[dict]:
        block = getattr(self, name.lower(), None)
        if isinstance(block, BaseModel):
            return block.model_dump()
        return None


payment_settings = PaymentSettings()
