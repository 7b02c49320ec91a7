"""SSLCOMMERZ hosted checkout adapter."""
from __future__ import annotations

from typing import Any

from application.dtos.payments import PaymentRequest
from infrastructure.external.payments.hosted_checkout import HostedCheckoutClient


class SslcommerzClient(HostedCheckoutClient):
    provider = "sslcommerz"
    display_name = "SSLCOMMERZ"
    required_config = ("store_id", "store_password", "api_key")
    supported_currencies = frozenset({"BDT", "USD"})
    default_currency = "BDT"
    sandbox_base_url = "https://sandbox.sslcommerz.com/api/v1"
    production_base_url = "https://api.sslcommerz.com/api/v1"

    webhook_id_field = "tran_id"
    webhook_status_field = "status"
    webhook_transaction_field = "bank_tran_id"
    webhook_amount_field = "amount"

    def _credentials(self) -> dict[str, Any]:
        return {
            "store_id": self.config["store_id"],
            "store_passwd": self.config["store_password"],
        }

    def _initialize_payload(self, request: PaymentRequest, currency: str) -> dict[str, Any]:
        customer = request.customer
        cancel_url = request.cancel_url or request.return_url or ""
        return {
            **self._credentials(),
            "tran_id": request.order_id,
            "total_amount": self._money(request.amount),
            "currency": currency,
            "product_name": request.description or "Payment",
            "cus_name": customer.get("name") or "Customer",
            "cus_email": customer.get("email") or "",
            "cus_phone": customer.get("phone") or customer.get("mobile") or "",
            "success_url": request.return_url or request.callback_url or "",
            "fail_url": cancel_url,
            "cancel_url": cancel_url,
            "ipn_url": request.notify_url or "",
        }
