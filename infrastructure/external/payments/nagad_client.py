"""
Nagad adapter.

Initialize is a two-step handshake: ``/api/initialize`` returns a
``paymentRefId`` which ``/api/complete`` turns into a checkout URL. Each step
carries a fresh random challenge and a ``YmdHis`` timestamp.
"""
from __future__ import annotations

import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any

from application.dtos.payments import PaymentRequest, PaymentResult
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import CanonicalStatus


class NagadClient(BasePaymentClient):
    provider = "nagad"
    display_name = "Nagad"
    required_config = ("merchant_id", "merchant_private_key", "nagad_public_key")
    supported_currencies = frozenset({"BDT"})
    default_currency = "BDT"
    sandbox_base_url = "https://api-sandbox.mynagad.com:3070"
    production_base_url = "https://api.mynagad.com:3070"

    webhook_id_field = "paymentRefId"
    webhook_status_field = "status"
    webhook_transaction_field = "issuerPaymentRefNo"
    webhook_amount_field = "amount"

    @staticmethod
    def _challenge() -> str:
        return secrets.token_hex(16)

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self._clock()).strftime("%Y%m%d%H%M%S")

    def _headers(self) -> dict[str, str]:
        return {
            "X-KM-Api-Version": "v-0.2.0",
            "X-KM-Client-Type": "PC_WEB",
            "X-KM-Merchant-Id": self.config["merchant_id"],
            "Accept": "application/json",
        }

    @staticmethod
    def _ok(status: int, body: dict[str, Any]) -> bool:
        return status < 400 and str(body.get("status", "")).lower() == "success"

    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        amount = self._money(request.amount)
        status, body = await self._request(
            "POST",
            "/api/initialize",
            json={
                "merchantId": self.config["merchant_id"],
                "orderId": request.order_id,
                "amount": amount,
                "currencyCode": currency,
                "datetime": self._timestamp(),
                "challenge": self._challenge(),
            },
            headers=self._headers(),
        )
        if not self._ok(status, body) or not body.get("paymentRefId"):
            return self._rejection(body.get("message") or "Payment initialization failed", body, status)

        status, completed = await self._request(
            "POST",
            "/api/complete",
            json={
                "merchantId": self.config["merchant_id"],
                "orderId": request.order_id,
                "paymentRefId": body["paymentRefId"],
                "amount": amount,
                "challenge": self._challenge(),
                "merchantCallbackURL": request.callback_url or request.return_url or "",
            },
            headers=self._headers(),
        )
        if not self._ok(status, completed):
            return self._rejection(completed.get("message") or "Payment completion failed", completed, status)

        ref = self._opt_str(completed.get("paymentRefId")) or str(body["paymentRefId"])
        return PaymentResult.ok(
            "Payment initialized successfully",
            data=completed,
            payment_id=ref,
            redirect_url=self._opt_str(completed.get("callBackUrl")),
            transaction_id=ref,
            amount=request.amount,
            currency=currency,
            status=CanonicalStatus.PENDING,
            http_code=status,
        )

    async def _verify(self, payment_id: str) -> PaymentResult:
        status, body = await self._request(
            "GET", f"/api/verify/{payment_id}", headers=self._headers()
        )
        # a body without a status is an error envelope, not an answer
        if status >= 400 or not body.get("status"):
            return self._rejection(body.get("message") or "Payment verification failed", body, status)
        canonical = self._map_status(body.get("status"))
        return PaymentResult.ok(
            body.get("message") or "Payment verified",
            data=body,
            payment_id=self._opt_str(body.get("paymentRefId")) or payment_id,
            transaction_id=self._opt_str(body.get("issuerPaymentRefNo")),
            amount=self._opt_decimal(body.get("amount")),
            currency=self._opt_str(body.get("currencyCode")) or self.default_currency,
            status=canonical,
            http_code=status,
        )

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        status, body = await self._request(
            "POST",
            "/api/refund",
            json={
                "merchantId": self.config["merchant_id"],
                "paymentRefId": payment_id,
                "amount": self._money(amount),
                "reason": reason,
                "datetime": self._timestamp(),
            },
            headers=self._headers(),
        )
        if not self._ok(status, body):
            return self._rejection(body.get("message") or "Payment refund failed", body, status)
        return PaymentResult.ok(
            "Payment refunded successfully",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(body.get("refundId")),
            amount=amount,
            currency=self.default_currency,
            status=CanonicalStatus.REFUNDED,
            http_code=status,
        )
