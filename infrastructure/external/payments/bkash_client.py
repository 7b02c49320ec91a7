"""
bKash tokenized checkout adapter.

- Session token from ``/tokenized/checkout/token/grant`` (app key/secret in the
  body, merchant username/password as headers), cached per adapter.
- ``statusCode == "0000"`` is success; any other code is a business rejection.
- Refunds authorize with the original ``trxID`` looked up from payment status.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from application.dtos.payments import PaymentRequest, PaymentResult, ProviderToken
from domain.common.exceptions import NetworkError
from infrastructure.external.payments.base import BasePaymentClient


_SUCCESS_CODE = "0000"


class BkashClient(BasePaymentClient):
    provider = "bkash"
    display_name = "bKash"
    required_config = ("app_key", "app_secret", "username", "password")
    supported_currencies = frozenset({"BDT"})
    default_currency = "BDT"
    sandbox_base_url = "https://tokenized.sandbox.bka.sh/v1.2.0-beta"
    production_base_url = "https://tokenized.pay.bka.sh/v1.2.0-beta"
    uses_token = True

    webhook_id_field = "paymentID"
    webhook_status_field = "transactionStatus"
    webhook_transaction_field = "trxID"
    webhook_amount_field = "amount"

    async def _fetch_token(self) -> ProviderToken:
        status, body = await self._request(
            "POST",
            "/tokenized/checkout/token/grant",
            json={"app_key": self.config["app_key"], "app_secret": self.config["app_secret"]},
            headers={
                "username": self.config["username"],
                "password": self.config["password"],
                "Accept": "application/json",
            },
        )
        if status >= 400 or not body.get("id_token"):
            raise NetworkError(
                "bKash token grant failed",
                provider=self.provider,
                details={"http_code": status, "status_code": body.get("statusCode"), "message": body.get("statusMessage")},
            )
        return self._token_from(body["id_token"], body.get("expires_in"), default_ttl=3600)

    async def _headers(self) -> dict[str, str]:
        token = await self._access_token()
        return {
            "Authorization": token,
            "X-APP-Key": self.config["app_key"],
            "Accept": "application/json",
        }

    @staticmethod
    def _accepted(status: int, body: dict[str, Any]) -> bool:
        return status < 400 and body.get("statusCode") == _SUCCESS_CODE

    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        payload = {
            "mode": "0011",
            "payerReference": request.customer.get("phone") or request.order_id,
            "callbackURL": request.callback_url or request.return_url or "",
            "amount": self._money(request.amount),
            "currency": currency,
            "intent": "sale",
            "merchantInvoiceNumber": request.order_id,
        }
        status, body = await self._request(
            "POST", "/tokenized/checkout/create", json=payload, headers=await self._headers()
        )
        if not self._accepted(status, body):
            return self._rejection(body.get("statusMessage") or body.get("errorMessage"), body, status)
        return PaymentResult.ok(
            body.get("statusMessage") or "Payment initialized",
            data=body,
            payment_id=self._opt_str(body.get("paymentID")),
            redirect_url=self._opt_str(body.get("bkashURL")),
            amount=request.amount,
            currency=currency,
            status=self._map_status(body.get("transactionStatus") or "Initiated"),
            http_code=status,
        )

    async def _verify(self, payment_id: str) -> PaymentResult:
        status, body = await self._request(
            "POST",
            "/tokenized/checkout/payment/status",
            json={"paymentID": payment_id},
            headers=await self._headers(),
        )
        if not self._accepted(status, body):
            return self._rejection(body.get("statusMessage") or body.get("errorMessage"), body, status)
        return PaymentResult.ok(
            body.get("statusMessage") or "Payment status retrieved",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(body.get("trxID")),
            amount=self._opt_decimal(body.get("amount")),
            currency=self._opt_str(body.get("currency")),
            status=self._map_status(body.get("transactionStatus")),
            http_code=status,
        )

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        payment = await self._verify(payment_id)
        if not payment.success or not payment.transaction_id:
            return self._rejection(
                payment.message if not payment.success else "bKash payment has no transaction to refund",
                payment.data,
                payment.http_code,
            )
        payload = {
            "paymentID": payment_id,
            "amount": self._money(amount),
            "trxID": payment.transaction_id,
            "sku": "refund",
            "reason": reason,
        }
        status, body = await self._request(
            "POST", "/tokenized/checkout/payment/refund", json=payload, headers=await self._headers()
        )
        if not self._accepted(status, body):
            return self._rejection(body.get("statusMessage") or body.get("errorMessage"), body, status)
        return PaymentResult.ok(
            body.get("statusMessage") or "Refund processed",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(body.get("refundTrxID")),
            amount=self._opt_decimal(body.get("amount")) or amount,
            currency=self._opt_str(body.get("currency")) or payment.currency,
            status=self._map_status(body.get("transactionStatus") or "Refunded"),
            http_code=status,
        )
