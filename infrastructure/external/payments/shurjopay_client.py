"""shurjoPay hosted checkout adapter."""
from __future__ import annotations

from typing import Any

from application.dtos.payments import PaymentRequest
from infrastructure.external.payments.hosted_checkout import HostedCheckoutClient


class ShurjopayClient(HostedCheckoutClient):
    provider = "shurjopay"
    display_name = "shurjoPay"
    required_config = ("merchant_id", "merchant_password", "api_key")
    supported_currencies = frozenset({"BDT", "USD"})
    default_currency = "BDT"
    sandbox_base_url = "https://sandbox.shurjopay.com/api/v1"
    production_base_url = "https://api.shurjopay.com/api/v1"

    def _credentials(self) -> dict[str, Any]:
        return {
            "merchant_id": self.config["merchant_id"],
            "merchant_password": self.config["merchant_password"],
        }

    def _initialize_payload(self, request: PaymentRequest, currency: str) -> dict[str, Any]:
        customer = request.customer
        return {
            **self._credentials(),
            "order_id": request.order_id,
            "amount": self._money(request.amount),
            "currency": currency,
            "customer_name": customer.get("name") or "Customer",
            "customer_email": customer.get("email") or "",
            "customer_phone": customer.get("phone") or customer.get("mobile") or "",
            "customer_address": customer.get("address") or "",
            "return_url": request.return_url or request.callback_url or "",
            "cancel_url": request.cancel_url or request.return_url or "",
        }
