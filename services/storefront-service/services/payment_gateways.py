"""Payment provider clients (Stripe, PayPal, SSLCommerz) over a shared HTTP client."""
import hashlib
import hmac
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from config import (
    APP_URL,
    CURRENCY,
    PAYPAL_API_BASE,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    SITE_NAME,
    SSLCOMMERZ_API_BASE,
    SSLCOMMERZ_CURRENCY,
    SSLCOMMERZ_STORE_ID,
    SSLCOMMERZ_STORE_PASSWORD,
    STRIPE_API_BASE,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_WEBHOOK_TOLERANCE_SECONDS,
)
from errors import PaymentDeclinedError, PaymentGatewayError, WebhookSignatureError
from models import Order
from monitoring import payment_gateway_duration_histogram

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class RefundProvider(ABC):
    """Provider side of a refund."""

    name: str

    @abstractmethod
    async def refund(self, reference: str, amount: float, reason: str) -> Dict[str, Any]:
        """
        Refund part or all of a captured payment.

        Args:
            reference: The provider reference stored on the order
            amount: Amount to refund in major units
            reason: Free-text reason

        Returns:
            Provider refund data

        Raises:
            PaymentGatewayError: If the provider is unreachable or rejects the refund
        """


class _ProviderClient:
    """Shared request plumbing: timing metrics and transport error mapping."""

    name = "provider"

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        start_time = time.time()
        status = "success"
        status_code = 0
        try:
            response = await self.http_client.request(method, url, **kwargs)
            status_code = response.status_code
            if response.status_code >= 400:
                status = "error"
            return response
        except httpx.HTTPError as e:
            status = "error"
            logger.error("Payment provider call failed", extra={
                "provider": self.name,
                "operation": operation,
                "error": str(e)
            })
            raise PaymentGatewayError(f"{self.name} is unavailable") from e
        finally:
            payment_gateway_duration_histogram.record(
                time.time() - start_time,
                {
                    "provider": self.name,
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code)
                }
            )

    def _fail(self, operation: str, response: httpx.Response) -> PaymentGatewayError:
        logger.warning("Payment provider returned error status", extra={
            "provider": self.name,
            "operation": operation,
            "status_code": response.status_code,
            "body": response.text[:500]
        })
        return PaymentGatewayError(f"{self.name} {operation} failed", details={"status_code": response.status_code})


class StripeClient(_ProviderClient, RefundProvider):
    """Stripe REST API client."""

    name = "stripe"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: str = STRIPE_SECRET_KEY,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
        api_base: str = STRIPE_API_BASE
    ):
        super().__init__(http_client)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def create_payment_intent(self, order: Order) -> Dict[str, Any]:
        """
        Create a PaymentIntent for the order total.

        Returns:
            Dict with the intent id and client secret
        """
        response = await self._request(
            "create_intent", "POST", f"{self.api_base}/v1/payment_intents",
            headers=self._headers,
            data={
                "amount": str(to_minor_units(order.total)),
                "currency": CURRENCY.lower(),
                "metadata[order_id]": str(order.id),
                "metadata[order_number]": order.order_number,
                "metadata[user_id]": str(order.user_id),
                "automatic_payment_methods[enabled]": "true",
            }
        )
        if response.status_code >= 400:
            raise self._fail("create_intent", response)

        intent = response.json()
        return {"id": intent["id"], "client_secret": intent.get("client_secret")}

    async def refund(self, reference: str, amount: float, reason: str) -> Dict[str, Any]:
        response = await self._request(
            "refund", "POST", f"{self.api_base}/v1/refunds",
            headers=self._headers,
            data={
                "payment_intent": reference,
                "amount": str(to_minor_units(amount)),
                "metadata[reason]": reason[:500],
            }
        )
        if response.status_code >= 400:
            raise self._fail("refund", response)
        return response.json()

    def construct_event(self, payload: bytes, signature_header: Optional[str], now: Optional[float] = None) -> Dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        The Stripe-Signature header carries a timestamp `t` and one or more
        `v1` HMAC-SHA256 signatures of "<t>.<payload>".

        Raises:
            WebhookSignatureError: If the header is missing, stale or no signature matches
        """
        if not signature_header:
            raise WebhookSignatureError("Missing stripe-signature header")

        timestamp = None
        signatures = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if timestamp is None or not timestamp.isdigit() or not signatures:
            raise WebhookSignatureError("Webhook signature verification failed")

        now = time.time() if now is None else now
        if abs(now - int(timestamp)) > STRIPE_WEBHOOK_TOLERANCE_SECONDS:
            raise WebhookSignatureError("Webhook timestamp outside tolerance")

        signed_payload = timestamp.encode() + b"." + payload
        expected = hmac.new(self.webhook_secret.encode(), signed_payload, hashlib.sha256).hexdigest()
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise WebhookSignatureError("Webhook signature verification failed")

        return json.loads(payload)


class PayPalClient(_ProviderClient, RefundProvider):
    """PayPal Orders v2 API client."""

    name = "paypal"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str = PAYPAL_CLIENT_ID,
        client_secret: str = PAYPAL_CLIENT_SECRET,
        api_base: str = PAYPAL_API_BASE
    ):
        super().__init__(http_client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base

    async def _access_token(self) -> str:
        response = await self._request(
            "oauth", "POST", f"{self.api_base}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"}
        )
        if response.status_code >= 400:
            raise self._fail("oauth", response)
        return response.json()["access_token"]

    async def _authorized(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self._access_token()}"}

    async def create_order(self, order: Order) -> Dict[str, Any]:
        """
        Create a PayPal order with the amount breakdown of the store order.

        Returns:
            Dict with the PayPal order id and the buyer approval URL
        """
        def amount(value: float) -> Dict[str, str]:
            return {"currency_code": CURRENCY, "value": f"{value:.2f}"}

        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": str(order.id),
                "amount": {
                    **amount(order.total),
                    "breakdown": {
                        "item_total": amount(order.subtotal),
                        "shipping": amount(order.shipping),
                        "tax_total": amount(order.tax),
                        "discount": amount(order.discount),
                    },
                },
            }],
            "application_context": {
                "brand_name": SITE_NAME,
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                "return_url": f"{APP_URL}/checkout/success",
                "cancel_url": f"{APP_URL}/checkout/cancel",
            },
        }
        response = await self._request(
            "create_order", "POST", f"{self.api_base}/v2/checkout/orders",
            headers=await self._authorized(),
            json=body
        )
        if response.status_code >= 400:
            raise self._fail("create_order", response)

        data = response.json()
        approve_url = next((link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), None)
        return {"id": data["id"], "approve_url": approve_url}

    async def capture(self, paypal_order_id: str) -> Dict[str, Any]:
        """
        Capture an approved PayPal order.

        Raises:
            PaymentDeclinedError: If PayPal does not report the capture as completed
        """
        response = await self._request(
            "capture", "POST", f"{self.api_base}/v2/checkout/orders/{paypal_order_id}/capture",
            headers=await self._authorized(),
            json={}
        )
        if response.status_code >= 500:
            raise self._fail("capture", response)
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if response.status_code >= 400 or data.get("status") != "COMPLETED":
            raise PaymentDeclinedError("Payment capture failed", details=data)
        return data

    async def refund(self, reference: str, amount: float, reason: str) -> Dict[str, Any]:
        headers = await self._authorized()
        response = await self._request(
            "get_order", "GET", f"{self.api_base}/v2/checkout/orders/{reference}",
            headers=headers
        )
        if response.status_code >= 400:
            raise self._fail("get_order", response)

        try:
            capture_id = response.json()["purchase_units"][0]["payments"]["captures"][0]["id"]
        except (KeyError, IndexError) as e:
            raise PaymentGatewayError("PayPal order has no capture to refund") from e

        response = await self._request(
            "refund", "POST", f"{self.api_base}/v2/payments/captures/{capture_id}/refund",
            headers=headers,
            json={"amount": {"currency_code": CURRENCY, "value": f"{amount:.2f}"}, "note_to_payer": reason[:255]}
        )
        if response.status_code >= 400:
            raise self._fail("refund", response)
        return response.json()


class SSLCommerzClient(_ProviderClient):
    """SSLCommerz hosted checkout session client."""

    name = "sslcommerz"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        store_id: str = SSLCOMMERZ_STORE_ID,
        store_password: str = SSLCOMMERZ_STORE_PASSWORD,
        api_base: str = SSLCOMMERZ_API_BASE
    ):
        super().__init__(http_client)
        self.store_id = store_id
        self.store_password = store_password
        self.api_base = api_base

    async def init_session(self, order: Order, customer_name: str, customer_email: str, customer_phone: Optional[str]) -> Dict[str, Any]:
        """
        Open a hosted payment session for the order.

        Returns:
            Dict with the session key and gateway URL

        Raises:
            PaymentDeclinedError: If SSLCommerz does not return SUCCESS
        """
        address = order.shipping_address or {}
        form = {
            "store_id": self.store_id,
            "store_passwd": self.store_password,
            "total_amount": f"{order.total:.2f}",
            "currency": SSLCOMMERZ_CURRENCY,
            "tran_id": f"{order.order_number}_{int(time.time() * 1000)}",
            "success_url": f"{APP_URL}/api/payment/sslcommerz/success",
            "fail_url": f"{APP_URL}/api/payment/sslcommerz/fail",
            "cancel_url": f"{APP_URL}/api/payment/sslcommerz/cancel",
            "ipn_url": f"{APP_URL}/api/payment/sslcommerz/ipn",
            "cus_name": customer_name,
            "cus_email": customer_email,
            "cus_phone": customer_phone or address.get("phone") or "N/A",
            "cus_add1": address.get("address", ""),
            "cus_city": address.get("city", ""),
            "cus_state": address.get("state", ""),
            "cus_postcode": address.get("postal_code", ""),
            "cus_country": address.get("country", ""),
            "shipping_method": "YES",
            "product_name": f"Order {order.order_number}",
            "product_category": "E-commerce",
            "product_profile": "general",
        }
        response = await self._request(
            "init", "POST", f"{self.api_base}/gwprocess/v4/api.php",
            data=form
        )
        if response.status_code >= 400:
            raise self._fail("init", response)

        data = response.json()
        if data.get("status") != "SUCCESS":
            raise PaymentDeclinedError("Failed to initialize payment", details=data)
        return {"sessionkey": data["sessionkey"], "gateway_url": data["GatewayPageURL"]}


class PaymentGateways:
    """The configured provider clients."""

    def __init__(self, http_client: httpx.AsyncClient):
        self.stripe = StripeClient(http_client)
        self.paypal = PayPalClient(http_client)
        self.sslcommerz = SSLCommerzClient(http_client)

    def refund_provider_for(self, payment_method: str) -> Optional[RefundProvider]:
        """Provider able to refund payments taken with this method, if any."""
        if payment_method in ("card", "stripe"):
            return self.stripe
        if payment_method == "paypal":
            return self.paypal
        return None
