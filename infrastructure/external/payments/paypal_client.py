"""
PayPal Orders v2 adapter.

OAuth2 client-credentials token (basic auth) cached per adapter. Orders are
created with ``intent=CAPTURE``; the buyer approves via the ``approve`` link
and the merchant captures afterwards. Refunds go to the capture, so the
capture id is looked up on the order first.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from application.dtos.payments import PaymentRequest, PaymentResult, ProviderToken
from application.utils.validation import validate_amount_precision, validate_payment_id
from domain.common.exceptions import NetworkError
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import CanonicalStatus


class PaypalClient(BasePaymentClient):
    provider = "paypal"
    display_name = "PayPal"
    required_config = ("client_id", "client_secret")
    supported_currencies = frozenset(
        {
            "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "NOK", "SEK", "DKK",
            "PLN", "CZK", "HUF", "ILS", "MXN", "BRL", "MYR", "PHP", "TWD", "THB",
            "SGD", "HKD", "NZD",
        }
    )
    default_currency = "USD"
    zero_decimal_currencies = frozenset({"JPY", "HUF", "TWD"})
    sandbox_base_url = "https://api-m.sandbox.paypal.com"
    production_base_url = "https://api-m.paypal.com"
    uses_token = True

    webhook_id_field = "id"
    webhook_status_field = "status"
    webhook_transaction_field = None
    webhook_amount_field = None

    async def _fetch_token(self) -> ProviderToken:
        status, body = await self._request(
            "POST",
            "/v1/oauth2/token",
            auth=(self.config["client_id"], self.config["client_secret"]),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json", "Accept-Language": "en_US"},
        )
        if status >= 400 or not body.get("access_token"):
            raise NetworkError(
                "PayPal token request failed",
                provider=self.provider,
                details={"http_code": status, "error": body.get("error")},
            )
        return self._token_from(body["access_token"], body.get("expires_in"), default_ttl=32400)

    async def _headers(self, request_id: Optional[str] = None) -> dict[str, str]:
        token = await self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    @staticmethod
    def _error_message(body: dict[str, Any], default: str) -> str:
        details = body.get("details")
        if isinstance(details, list) and details and isinstance(details[0], dict):
            return details[0].get("description") or body.get("message") or default
        return body.get("message") or default

    @staticmethod
    def _approval_url(order: dict[str, Any]) -> Optional[str]:
        for link in order.get("links") or []:
            if isinstance(link, dict) and link.get("rel") in ("approve", "payer-action"):
                return link.get("href")
        return None

    @staticmethod
    def _purchase_unit(order: dict[str, Any]) -> dict[str, Any]:
        units = order.get("purchase_units") or []
        return units[0] if units and isinstance(units[0], dict) else {}

    def _capture(self, order: dict[str, Any]) -> dict[str, Any]:
        captures = (self._purchase_unit(order).get("payments") or {}).get("captures") or []
        return captures[0] if captures and isinstance(captures[0], dict) else {}

    def _order_amount(self, order: dict[str, Any]) -> tuple[Optional[Decimal], Optional[str]]:
        amount = self._purchase_unit(order).get("amount") or {}
        return self._opt_decimal(amount.get("value")), self._opt_str(amount.get("currency_code"))

    async def _initialize(self, request: PaymentRequest, currency: str) -> PaymentResult:
        customer = request.customer
        order: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.order_id,
                    "amount": {
                        "currency_code": currency,
                        "value": self._money(request.amount, self.amount_places_for(currency)),
                    },
                    "description": request.description or "Payment",
                }
            ],
            "application_context": {
                "brand_name": self.config.get("brand_name") or "Payment Gateway",
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                "return_url": request.return_url or request.callback_url or "",
                "cancel_url": request.cancel_url or request.return_url or "",
            },
        }
        if customer.get("email"):
            order["payer"] = {
                "email_address": customer["email"],
                "name": {
                    "given_name": customer.get("first_name", ""),
                    "surname": customer.get("last_name", ""),
                },
            }
        status, body = await self._request(
            "POST",
            "/v2/checkout/orders",
            json=order,
            headers=await self._headers(request_id=request.order_id),
        )
        if status != 201 or not body.get("id"):
            return self._rejection(self._error_message(body, "Order creation failed"), body, status)
        return PaymentResult.ok(
            "Payment initialized successfully",
            data=body,
            payment_id=str(body["id"]),
            redirect_url=self._approval_url(body),
            transaction_id=str(body["id"]),
            amount=request.amount,
            currency=currency,
            status=self._map_status(body.get("status") or "CREATED"),
            http_code=status,
        )

    async def _get_order(self, order_id: str) -> tuple[int, dict[str, Any]]:
        return await self._request("GET", f"/v2/checkout/orders/{order_id}", headers=await self._headers())

    async def _verify(self, payment_id: str) -> PaymentResult:
        status, order = await self._get_order(payment_id)
        if status >= 400:
            return self._rejection(self._error_message(order, "Payment verification failed"), order, status)
        amount, currency = self._order_amount(order)
        capture = self._capture(order)
        return PaymentResult.ok(
            "Payment verified successfully",
            data=order,
            payment_id=payment_id,
            transaction_id=self._opt_str(capture.get("id")),
            amount=amount,
            currency=currency,
            status=self._map_status(order.get("status")),
            http_code=status,
        )

    async def capture_payment(self, order_id: str) -> PaymentResult:
        """Capture an approved order."""
        order_id = validate_payment_id(order_id, provider=self.provider)
        self._log("payment_capture_request", payment_id=order_id)
        status, body = await self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            json={},
            headers=await self._headers(request_id=f"capture-{order_id}"),
        )
        if status >= 400:
            return self._rejection(self._error_message(body, "Payment capture failed"), body, status)
        capture = self._capture(body)
        amount = capture.get("amount") or {}
        result = PaymentResult.ok(
            "Payment captured successfully",
            data=body,
            payment_id=order_id,
            transaction_id=self._opt_str(capture.get("id")),
            amount=self._opt_decimal(amount.get("value")),
            currency=self._opt_str(amount.get("currency_code")),
            status=self._map_status(body.get("status")),
            http_code=status,
        )
        self._log("payment_capture_response", payment_id=order_id, status=result.status.value)
        return result

    async def _refund(self, payment_id: str, amount: Decimal, reason: str) -> PaymentResult:
        status, order = await self._get_order(payment_id)
        if status >= 400:
            return self._rejection(self._error_message(order, "Order lookup failed"), order, status)
        capture_id = self._capture(order).get("id")
        if not capture_id:
            return self._rejection("No capture found for this order", order, status)
        _, currency = self._order_amount(order)
        currency = currency or self.default_currency
        places = self.amount_places_for(currency)
        validate_amount_precision(amount, places, provider=self.provider)

        status, body = await self._request(
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            json={
                "amount": {"currency_code": currency, "value": self._money(amount, places)},
                "note_to_payer": reason,
            },
            headers=await self._headers(),
        )
        if status >= 400:
            return self._rejection(self._error_message(body, "Refund failed"), body, status)
        refund_status = self._map_refund_status(body.get("status"))
        if refund_status == CanonicalStatus.FAILED:
            reason_info = body.get("status_details") or {}
            return self._rejection(
                f"Refund {body.get('status')}: {reason_info.get('reason') or 'declined by PayPal'}",
                body,
                status,
                status=refund_status,
                payment_id=payment_id,
                transaction_id=self._opt_str(body.get("id")),
            )
        refunded = body.get("amount") or {}
        return PaymentResult.ok(
            "Payment refunded successfully",
            data=body,
            payment_id=payment_id,
            transaction_id=self._opt_str(body.get("id")),
            amount=self._opt_decimal(refunded.get("value")) or amount,
            currency=self._opt_str(refunded.get("currency_code")) or currency,
            status=refund_status,
            http_code=status,
        )
