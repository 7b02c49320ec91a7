"""
SureCash adapter.

Every POST carries ``X-Signature``: hex HMAC-SHA256 of the raw JSON body
keyed with the merchant secret.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any

from application.dtos.payments import PaymentRequest
from infrastructure.external.payments.hosted_checkout import HostedCheckoutClient


class SurecashClient(HostedCheckoutClient):
    provider = "surecash"
    display_name = "SureCash"
    required_config = ("api_key", "secret_key", "merchant_id")
    supported_currencies = frozenset({"BDT"})
    default_currency = "BDT"
    sandbox_base_url = "https://sandbox.surecash.com.bd/api/v1"
    production_base_url = "https://api.surecash.com.bd/api/v1"

    def sign(self, body: bytes) -> str:
        return hmac.new(self.config["secret_key"].encode("utf-8"), body, hashlib.sha256).hexdigest()

    def _credentials(self) -> dict[str, Any]:
        return {"merchant_id": self.config["merchant_id"]}

    def _extra_headers(self, body: bytes) -> dict[str, str]:
        if not body:
            return {}
        return {"X-Signature": self.sign(body)}

    def _initialize_payload(self, request: PaymentRequest, currency: str) -> dict[str, Any]:
        customer = request.customer
        return {
            **self._credentials(),
            "order_id": request.order_id,
            "amount": self._money(request.amount),
            "currency": currency,
            "description": request.description or "Payment",
            "customer_name": customer.get("name") or "Customer",
            "customer_mobile": customer.get("mobile") or customer.get("phone") or "",
            "success_url": request.return_url or request.callback_url or "",
            "fail_url": request.cancel_url or request.return_url or "",
            "callback_url": request.notify_url or request.callback_url or "",
        }
