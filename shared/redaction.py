"""
Redaction and masking helpers shared by logging, the gateway registry and
the security service.

Everything that can end up in a log line passes through here first.
"""
from __future__ import annotations

from typing import Any, Mapping

REDACTED = "[REDACTED]"

# Credential keys found in provider configuration blocks.
SECRET_CONFIG_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "secret_key",
        "password",
        "private_key",
        "merchant_private_key",
        "signature_key",
        "client_secret",
        "merchant_password",
        "store_password",
        "app_secret",
        "access_token",
        "refresh_token",
        "id_token",
        "token",
        "authorization",
        "hash_secret",
        "encryption_key",
        "webhook_secret",
    }
)

# Customer / payment fields that are encrypted at rest and masked in logs.
SENSITIVE_DATA_FIELDS: frozenset[str] = frozenset(
    {
        "card_number",
        "cvv",
        "pin",
        "otp",
        "password",
        "secret_key",
        "access_token",
        "refresh_token",
        "bank_account",
        "routing_number",
        "ssn",
        "tax_id",
        "personal_id",
        "phone_number",
        "email",
    }
)


def _is_secret_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower().replace("-", "_")
    return lowered in SECRET_CONFIG_KEYS or lowered.endswith(("_secret", "_password", "_token"))


def redact_config(config: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``config`` with every secret-bearing key replaced.

    Nested mappings are redacted recursively. Empty values stay empty so
    configuration diagnostics can still tell "missing" from "present".
    """
    out: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, Mapping):
            out[key] = redact_config(value)
        elif _is_secret_key(key) and value not in (None, ""):
            out[key] = REDACTED
        else:
            out[key] = value
    return out


def mask_value(value: Any) -> str:
    """Keep the first two characters and star out the rest.

    Values of four characters or fewer are masked completely.
    """
    text = str(value)
    if len(text) <= 4:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 2)


def mask_sensitive_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            out[key] = mask_sensitive_fields(value)
        elif value in (None, ""):
            out[key] = value
        elif key in SENSITIVE_DATA_FIELDS:
            out[key] = mask_value(value)
        elif _is_secret_key(key):
            out[key] = REDACTED
        else:
            out[key] = value
    return out
