"""
Payment domain events.

Dataclass events record important payment lifecycle facts for downstream handling
(e.g., notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    order_id: str
    provider: str
    payment_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentInitialized(PaymentEvent):
    amount: str = ""
    currency: str = ""


@dataclass
class PaymentCompleted(PaymentEvent):
    transaction_id: Optional[str] = None


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentCancelled(PaymentEvent):
    pass


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_id: str = ""
    amount: str = ""
    refunded_total: str = ""
    fully_refunded: bool = False
