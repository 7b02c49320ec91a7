"""
Shared client for hosted-checkout providers (SSLCOMMERZ, shurjoPay, SureCash).

They speak the same envelope::

    {"status": "success", "message": "...", "data": {"transaction_id": ..., "payment_url": ..., "status": ...}}

with bearer api-key auth against ``/payment/initialize``,
``/payment/verify/{id}`` and ``/payment/refund``. Subclasses add their
credentials to the payload and may add request headers (e.g. a body
signature).
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from application.dtos.payments import PaymentRequest, PaymentResult
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import CanonicalStatus


class HostedCheckoutClient(BasePaymentClient):
    order_field: str = "order_id"
    success_url_field: str = "success_url"

    webhook_id_field = "transaction_id"
    webhook_status_field = "status"
    webhook_transaction_field = "bank_transaction_id"
    webhook_amount_field = "amount"

    def _credentials(self) -> dict[str, Any]:
        return {}

    def _extra_headers(self, body: bytes) -> dict[str, str]:
        return {}

    def _headers(self, body: bytes = b"") -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config['api_key']}",
            "Accept": "application/json",
        }
        if body:
            headers["Content-Type"] = "application/json"
        headers.update(self._extra_headers(body))
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        # Serialized once so header signatures cover the exact bytes sent
        body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        return await self._request("POST", path, content=body, headers=self._headers(body))

    @staticmethod
    def _ok(status: int, body: dict[str, Any]) -> bool:
        return status < 400 and str(body.get("status", "")).lower() == "success"

    @staticmethod
    def _data(body: dict[str, Any]) -> dict[str, Any]:
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    def _initialize_payload(self, request: PaymentRequest, currency: str) -> dict[str, Any]:
        customer = request.customer
        cancel_url = request.cancel_url or request.return_url or ""
        return {
            **self._credentials(),
            self.order_field: request.order_id,
            "amount": self._money(request.amount),
            "currency": currency,
            "description": request.description or "Payment",
            "customer_name": customer.get("name") or "Customer",
            "customer_email": customer.get("email") or "",
            "customer_mobile": customer.get("mobile") or customer.get("phone") or "",
            self.success_url_field: request.return_url or request.callback_url or "",
            "fail_url": cancel_url,
            "cancel_url": cancel_url,
            "ipn_url": request.notify_url or "",
        }

    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        status, body = await self._post("/payment/initialize", self._initialize_payload(request, currency))
        data = self._data(body)
        if not self._ok(status, body) or not data.get("transaction_id"):
            return self._rejection(body.get("message") or "Payment initialization failed", body, status)
        return PaymentResult.ok(
            body.get("message") or "Payment initialized successfully",
            data=body,
            payment_id=str(data["transaction_id"]),
            redirect_url=self._opt_str(data.get("payment_url")),
            transaction_id=str(data["transaction_id"]),
            amount=request.amount,
            currency=currency,
            status=CanonicalStatus.PENDING,
            http_code=status,
        )

    async def _verify(self, payment_id: str) -> PaymentResult:
        status, body = await self._request(
            "GET", f"/payment/verify/{payment_id}", headers=self._headers()
        )
        if status >= 400:
            return self._rejection(body.get("message") or "Payment verification failed", body, status)
        data = self._data(body)
        return PaymentResult.ok(
            body.get("message") or "Payment verified",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(data.get("bank_transaction_id")) or payment_id,
            amount=self._opt_decimal(data.get("amount")),
            currency=self._opt_str(data.get("currency")) or self.default_currency,
            status=self._map_status(data.get("status")),
            http_code=status,
        )

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        status, body = await self._post(
            "/payment/refund",
            {
                **self._credentials(),
                "transaction_id": payment_id,
                "amount": self._money(amount),
                "reason": reason,
            },
        )
        if not self._ok(status, body):
            return self._rejection(body.get("message") or "Payment refund failed", body, status)
        data = self._data(body)
        return PaymentResult.ok(
            body.get("message") or "Payment refunded successfully",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(data.get("refund_id")),
            amount=self._opt_decimal(data.get("refunded_amount")) or amount,
            currency=self._opt_str(data.get("currency")) or self.default_currency,
            status=CanonicalStatus.REFUNDED,
            http_code=status,
        )
