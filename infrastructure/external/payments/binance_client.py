"""
Binance Pay adapter.

The session token is granted by ``/api/v3/payment/token`` against an
HMAC-SHA256 signature of ``timestamp=<ms>`` keyed with the secret key. The
response envelope carries ``status == "SUCCESS"``; the order state lives in
``data.status``.
"""
from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from typing import Any

from application.dtos.payments import PaymentRequest, PaymentResult, ProviderToken
from domain.common.exceptions import NetworkError
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import CanonicalStatus


class BinanceClient(BasePaymentClient):
    provider = "binance"
    display_name = "Binance Pay"
    required_config = ("api_key", "secret_key")
    supported_currencies = frozenset({"USDT", "BTC", "ETH", "BNB"})
    default_currency = "USDT"
    sandbox_base_url = "https://testnet.binance.vision"
    production_base_url = "https://api.binance.com"
    uses_token = True
    amount_places = 8

    webhook_id_field = "prepayId"
    webhook_status_field = "status"
    webhook_transaction_field = "transactionId"
    webhook_amount_field = "totalFee"

    def _timestamp_ms(self) -> int:
        return int(self._clock() * 1000)

    def sign(self, message: str) -> str:
        return hmac.new(
            self.config["secret_key"].encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    async def _fetch_token(self) -> ProviderToken:
        timestamp = self._timestamp_ms()
        status, body = await self._request(
            "POST",
            "/api/v3/payment/token",
            json={"timestamp": timestamp},
            headers={
                "X-MBX-APIKEY": self.config["api_key"],
                "X-MBX-SIGNATURE": self.sign(f"timestamp={timestamp}"),
                "Accept": "application/json",
            },
        )
        if status >= 400 or not body.get("accessToken"):
            raise NetworkError(
                "Binance token grant failed",
                provider=self.provider,
                details={"http_code": status, "message": body.get("msg")},
            )
        return self._token_from(body["accessToken"], body.get("expiresIn"), default_ttl=3600)

    async def _headers(self) -> dict[str, str]:
        token = await self._access_token()
        return {
            "X-MBX-APIKEY": self.config["api_key"],
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    @staticmethod
    def _ok(status: int, body: dict[str, Any]) -> bool:
        return status < 400 and body.get("status") == "SUCCESS"

    @staticmethod
    def _order(body: dict[str, Any]) -> dict[str, Any]:
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        payload = {
            "merchantTradeNo": request.order_id,
            "totalFee": self._money(request.amount),
            "currency": currency,
            "productName": request.description or "Payment",
            "productDetail": request.description or "",
            "returnUrl": request.return_url or "",
            "notifyUrl": request.notify_url or request.callback_url or "",
            "timestamp": self._timestamp_ms(),
        }
        status, body = await self._request(
            "POST", "/api/v3/payment/order", json=payload, headers=await self._headers()
        )
        if not self._ok(status, body):
            return self._rejection(body.get("msg") or "Payment initialization failed", body, status)
        order = self._order(body)
        prepay_id = self._opt_str(order.get("prepayId") or body.get("prepayId"))
        return PaymentResult.ok(
            "Payment initialized successfully",
            data=body,
            payment_id=prepay_id,
            redirect_url=self._opt_str(order.get("checkoutUrl") or order.get("qrCodeUrl") or body.get("qrCodeUrl")),
            transaction_id=prepay_id,
            amount=request.amount,
            currency=currency,
            status=CanonicalStatus.PENDING,
            http_code=status,
        )

    async def _verify(self, payment_id: str) -> PaymentResult:
        status, body = await self._request(
            "GET",
            "/api/v3/payment/query",
            params={"prepayId": payment_id, "timestamp": self._timestamp_ms()},
            headers=await self._headers(),
        )
        if not self._ok(status, body):
            return self._rejection(body.get("msg") or "Payment verification failed", body, status)
        order = self._order(body)
        return PaymentResult.ok(
            "Payment verified successfully",
            data=body,
            payment_id=self._opt_str(order.get("prepayId")) or payment_id,
            transaction_id=self._opt_str(order.get("transactionId")),
            amount=self._opt_decimal(order.get("totalFee") or order.get("orderAmount")),
            currency=self._opt_str(order.get("currency")) or self.default_currency,
            status=self._map_status(order.get("status")),
            http_code=status,
        )

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        payload = {
            "prepayId": payment_id,
            "refundRequestId": f"{payment_id}-{self._timestamp_ms()}",
            "refundAmount": self._money(amount),
            "refundReason": reason,
            "timestamp": self._timestamp_ms(),
        }
        status, body = await self._request(
            "POST", "/api/v3/payment/refund", json=payload, headers=await self._headers()
        )
        if not self._ok(status, body):
            return self._rejection(body.get("msg") or "Payment refund failed", body, status)
        order = self._order(body)
        return PaymentResult.ok(
            "Payment refunded successfully",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(order.get("refundId") or body.get("refundId")),
            amount=amount,
            currency=self._opt_str(order.get("currency")) or self.default_currency,
            status=CanonicalStatus.REFUNDED,
            http_code=status,
        )
