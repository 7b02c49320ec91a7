"""
Payment specific codes, the canonical status vocabulary and provider status mapping.
"""
from __future__ import annotations

from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Gateway errors (6xxxx)
    GATEWAY_ERROR = 60000
    CONFIGURATION_ERROR = 60100
    UNKNOWN_PROVIDER = 60101
    VALIDATION_ERROR = 60200
    NETWORK_ERROR = 60300
    TIMEOUT = 60301
    INVALID_RESPONSE = 60302
    SECURITY_ERROR = 60400
    RATE_LIMITED = 60401
    SIGNATURE_ERROR = 60402
    TAMPER_DETECTED = 60403

    # Lifecycle errors (61xxx)
    PAYMENT_ALREADY_EXISTS = 61000
    PAYMENT_NOT_FOUND = 61001
    REFUND_NOT_FOUND = 61002
    REFUND_EXCEEDS_PAYMENT = 61003
    PAYMENT_NOT_REFUNDABLE = 61004
    INVALID_STATE_TRANSITION = 61005


class CanonicalStatus(str, Enum):
    """Provider-agnostic payment status reported by every adapter."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


class FraudIndicator(str, Enum):
    """Advisory tags produced by the fraud pre-check."""
    SUSPICIOUS_IP = "suspicious_ip"
    RAPID_PAYMENTS = "rapid_payments"
    UNUSUAL_AMOUNT = "unusual_amount"
    SUSPICIOUS_USER_AGENT = "suspicious_user_agent"


_P = CanonicalStatus.PENDING
_C = CanonicalStatus.COMPLETED
_F = CanonicalStatus.FAILED
_R = CanonicalStatus.REFUNDED

# Provider status → canonical status. Anything missing maps to UNKNOWN.
# Keys are matched case-insensitively (see BasePaymentClient._map_status).
_PROVIDER_STATUS_TO_CANONICAL: dict[str, dict[str, CanonicalStatus]] = {
    "bkash": {
        # transactionStatus
        "INITIATED": _P,
        "INPROGRESS": _P,
        "AUTHORIZED": _P,
        "PENDING AUTHORIZED": _P,
        "COMPLETED": _C,
        "FAILED": _F,
        "CANCELLED": _F,
        "EXPIRED": _F,
        "DECLINED": _F,
        "REFUNDED": _R,
    },
    "nagad": {
        # status on verify / callback
        "ORDERINITIATED": _P,
        "READY": _P,
        "INPROGRESS": _P,
        "SUCCESS": _C,
        "ABORTED": _F,
        "CANCELLED": _F,
        "FAILED": _F,
        "FRAUD": _F,
        "INVALIDREQUEST": _F,
        "UNKNOWNFAILED": _F,
        "REFUNDED": _R,
    },
    "binance": {
        # data.status on order query
        "INITIAL": _P,
        "PENDING": _P,
        "REFUNDING": _P,
        "PAID": _C,
        "CANCELED": _F,
        "ERROR": _F,
        "EXPIRED": _F,
        "REFUNDED": _R,
        "FULL_REFUNDED": _R,
    },
    "paypal": {
        # order status
        "CREATED": _P,
        "SAVED": _P,
        "APPROVED": _P,
        "PAYER_ACTION_REQUIRED": _P,
        "COMPLETED": _C,
        "VOIDED": _F,
    },
    "sslcommerz": {
        "PENDING": _P,
        "PROCESSING": _P,
        "SUCCESS": _C,
        "COMPLETED": _C,
        "VALID": _C,
        "VALIDATED": _C,
        "FAILED": _F,
        "CANCELLED": _F,
        "UNATTEMPTED": _F,
        "EXPIRED": _F,
        "REFUNDED": _R,
    },
    "shurjopay": {
        "PENDING": _P,
        "PROCESSING": _P,
        "INITIATED": _P,
        "SUCCESS": _C,
        "COMPLETED": _C,
        "FAILED": _F,
        "CANCELLED": _F,
        "DECLINED": _F,
        "REFUNDED": _R,
    },
    "surecash": {
        "PENDING": _P,
        "PROCESSING": _P,
        "SUCCESS": _C,
        "COMPLETED": _C,
        "FAILED": _F,
        "CANCELLED": _F,
        "REVERSED": _R,
        "REFUNDED": _R,
    },
}

PROVIDER_STATUS_TO_CANONICAL: Mapping[str, Mapping[str, CanonicalStatus]] = MappingProxyType(
    {name: MappingProxyType(table) for name, table in _PROVIDER_STATUS_TO_CANONICAL.items()}
)

# Refund status reported on a refund resource → canonical status.
# Only providers whose refund resource carries its own status are listed.
_REFUND_STATUS_TO_CANONICAL: dict[str, dict[str, CanonicalStatus]] = {
    "paypal": {
        # refund status on /v2/payments/captures/{id}/refund
        "PENDING": _P,
        "COMPLETED": _R,
        "FAILED": _F,
        "CANCELLED": _F,
    },
}

REFUND_STATUS_TO_CANONICAL: Mapping[str, Mapping[str, CanonicalStatus]] = MappingProxyType(
    {name: MappingProxyType(table) for name, table in _REFUND_STATUS_TO_CANONICAL.items()}
)
