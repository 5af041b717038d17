"""Tests for the payment provider flows and the Stripe webhook."""

import hashlib
import hmac
import json
import time
from urllib.parse import parse_qs

import httpx
import pytest

from errors import WebhookSignatureError
from models import Order
from services.payment_gateways import StripeClient

WEBHOOK_SECRET = "whsec_storefront"


def _signature(payload: bytes, timestamp=None, secret=WEBHOOK_SECRET):
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _post_event(client, event, signature=None):
    payload = json.dumps(event).encode()
    return client.post(
        "/api/payment/stripe/webhook",
        content=payload,
        headers={"stripe-signature": signature or _signature(payload), "Content-Type": "application/json"},
    )


@pytest.fixture
def card_order_id(place_order, product):
    return place_order([{"product_id": product.id, "quantity": 1}], payment_method="card").json()["order"]["id"]


class TestConstructEvent:
    def _client(self):
        return StripeClient(httpx.AsyncClient(), secret_key="sk", webhook_secret=WEBHOOK_SECRET)

    def test_valid_signature(self):
        payload = b'{"type": "ping"}'

        event = self._client().construct_event(payload, _signature(payload))

        assert event == {"type": "ping"}

    def test_wrong_secret(self):
        payload = b'{"type": "ping"}'

        with pytest.raises(WebhookSignatureError):
            self._client().construct_event(payload, _signature(payload, secret="whsec_other"))

    def test_tampered_payload(self):
        signature = _signature(b'{"type": "ping"}')

        with pytest.raises(WebhookSignatureError):
            self._client().construct_event(b'{"type": "pong"}', signature)

    def test_stale_timestamp(self):
        payload = b'{"type": "ping"}'
        signature = _signature(payload, timestamp=1_000_000)

        with pytest.raises(WebhookSignatureError):
            self._client().construct_event(payload, signature, now=1_000_000 + 301)

    def test_missing_header(self):
        with pytest.raises(WebhookSignatureError):
            self._client().construct_event(b"{}", None)


class TestStripe:
    def test_create_intent(self, client, db, provider, card_order_id, customer_headers):
        provider.add("POST", "/v1/payment_intents", json={"id": "pi_123", "client_secret": "pi_123_secret"})

        response = client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["client_secret"] == "pi_123_secret"
        assert response.json()["payment_intent_id"] == "pi_123"

        form = parse_qs(provider.requests[0].content.decode())
        assert form["amount"] == ["7200"]
        assert form["metadata[order_id]"] == [str(card_order_id)]

        order = db.get(Order, card_order_id)
        assert order.payment_reference == "pi_123"
        assert order.payment_status == "pending"

    def test_second_intent_rejected(self, client, provider, card_order_id, customer_headers):
        provider.add("POST", "/v1/payment_intents", json={"id": "pi_123", "client_secret": "pi_123_secret"})
        client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)

        response = client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Payment already initiated for this order"

    def test_other_customers_order(self, client, card_order_id, other_headers):
        response = client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=other_headers)

        assert response.status_code == 403

    def test_cancelled_order(self, client, card_order_id, customer_headers):
        client.post(f"/api/orders/{card_order_id}/cancel", headers=customer_headers)

        response = client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Order has been cancelled"

    def test_provider_error(self, client, db, provider, card_order_id, customer_headers):
        provider.add("POST", "/v1/payment_intents", status=500, json={"error": {"message": "boom"}})

        response = client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 502
        assert db.get(Order, card_order_id).payment_reference is None


class TestStripeWebhook:
    def test_payment_succeeded(self, client, db, email_sender, card_order_id):
        email_sender.sent.clear()
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_123", "metadata": {"order_id": str(card_order_id)}}},
        }

        response = _post_event(client, event)

        assert response.status_code == 200
        assert response.json()["received"] is True
        order = db.get(Order, card_order_id)
        assert order.payment_status == "paid"
        assert order.order_status == "confirmed"
        assert order.payment_reference == "pi_123"
        assert email_sender.sent[0]["subject"] == f"Order Confirmation - {order.order_number}"

    def test_invalid_signature(self, client, db, card_order_id):
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_123", "metadata": {"order_id": str(card_order_id)}}},
        }

        response = _post_event(client, event, signature="t=1,v1=deadbeef")

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert db.get(Order, card_order_id).payment_status == "pending"

    def test_payment_failed(self, client, db, card_order_id):
        event = {
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_123",
                "metadata": {"order_id": str(card_order_id)},
                "last_payment_error": {"message": "Your card was declined."},
            }},
        }

        _post_event(client, event)

        order = db.get(Order, card_order_id)
        assert order.payment_status == "failed"
        assert "Payment failed: Your card was declined." in order.notes

    def test_charge_refunded(self, client, db, card_order_id):
        order = db.get(Order, card_order_id)
        order.payment_status = "paid"
        order.payment_reference = "pi_123"
        db.commit()
        event = {
            "type": "charge.refunded",
            "data": {"object": {"payment_intent": "pi_123", "amount": 7200, "amount_refunded": 2000}},
        }

        _post_event(client, event)

        db.expire_all()
        order = db.get(Order, card_order_id)
        assert order.payment_status == "partially_refunded"
        assert order.refund_amount == 20.0

    def test_success_after_cancellation_queues_refund(self, client, db, provider, email_sender, card_order_id, customer_headers):
        provider.add("POST", "/v1/payment_intents", json={"id": "pi_123", "client_secret": "pi_123_secret"})
        client.post("/api/payment/stripe/create-intent", json={"order_id": card_order_id}, headers=customer_headers)
        client.post(f"/api/orders/{card_order_id}/cancel", headers=customer_headers)
        email_sender.sent.clear()
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_123", "metadata": {"order_id": str(card_order_id)}}},
        }

        response = _post_event(client, event)

        assert response.status_code == 200
        db.expire_all()
        order = db.get(Order, card_order_id)
        assert order.order_status == "cancelled"
        assert order.payment_status == "refund_pending"
        assert email_sender.sent == []

    def test_replayed_success_keeps_refund_state(self, client, db, card_order_id):
        order = db.get(Order, card_order_id)
        order.payment_status = "refunded"
        order.payment_reference = "pi_123"
        db.commit()
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_123", "metadata": {"order_id": str(card_order_id)}}},
        }

        _post_event(client, event)

        db.expire_all()
        assert db.get(Order, card_order_id).payment_status == "refunded"

    def test_unknown_event_acknowledged(self, client):
        response = _post_event(client, {"type": "customer.created", "data": {"object": {}}})

        assert response.status_code == 200


class TestPayPal:
    @pytest.fixture
    def paypal(self, provider):
        provider.add("POST", "/v1/oauth2/token", json={"access_token": "A21", "expires_in": 3600})
        provider.add("POST", "/v2/checkout/orders", json={
            "id": "PAYPAL-1",
            "status": "CREATED",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve/PAYPAL-1"}],
        })
        return provider

    def test_create_order(self, client, db, paypal, card_order_id, customer_headers):
        response = client.post("/api/payment/paypal/create-order", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.json()["paypal_order_id"] == "PAYPAL-1"
        assert response.json()["approve_url"] == "https://paypal.test/approve/PAYPAL-1"

        body = json.loads(paypal.requests[1].content)
        amount = body["purchase_units"][0]["amount"]
        assert amount["value"] == "72.00"
        assert amount["breakdown"]["shipping"]["value"] == "50.00"
        assert db.get(Order, card_order_id).payment_reference == "PAYPAL-1"

    def test_capture_completed(self, client, db, paypal, email_sender, card_order_id, customer_headers):
        client.post("/api/payment/paypal/create-order", json={"order_id": card_order_id}, headers=customer_headers)
        paypal.add("POST", "/v2/checkout/orders/PAYPAL-1/capture", status=201, json={"id": "PAYPAL-1", "status": "COMPLETED"})

        response = client.post("/api/payment/paypal/capture", json={"paypal_order_id": "PAYPAL-1"}, headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["order"]["payment_status"] == "paid"
        assert response.json()["order"]["order_status"] == "confirmed"

    def test_capture_declined(self, client, db, paypal, card_order_id, customer_headers):
        client.post("/api/payment/paypal/create-order", json={"order_id": card_order_id}, headers=customer_headers)
        paypal.add("POST", "/v2/checkout/orders/PAYPAL-1/capture", status=422, json={"name": "UNPROCESSABLE_ENTITY"})

        response = client.post("/api/payment/paypal/capture", json={"paypal_order_id": "PAYPAL-1"}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Payment capture failed"
        assert db.get(Order, card_order_id).payment_status == "pending"

    def test_capture_cancelled_order(self, client, db, paypal, card_order_id, customer_headers):
        client.post("/api/payment/paypal/create-order", json={"order_id": card_order_id}, headers=customer_headers)
        client.post(f"/api/orders/{card_order_id}/cancel", headers=customer_headers)
        paypal.add("POST", "/v2/checkout/orders/PAYPAL-1/capture", status=201, json={"id": "PAYPAL-1", "status": "COMPLETED"})

        response = client.post("/api/payment/paypal/capture", json={"paypal_order_id": "PAYPAL-1"}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Order has been cancelled"
        assert "/v2/checkout/orders/PAYPAL-1/capture" not in paypal.paths()
        db.expire_all()
        assert db.get(Order, card_order_id).payment_status == "pending"

    def test_capture_provider_outage(self, client, paypal, card_order_id, customer_headers):
        client.post("/api/payment/paypal/create-order", json={"order_id": card_order_id}, headers=customer_headers)
        paypal.add("POST", "/v2/checkout/orders/PAYPAL-1/capture", status=503, text="Service Unavailable")

        response = client.post("/api/payment/paypal/capture", json={"paypal_order_id": "PAYPAL-1"}, headers=customer_headers)

        assert response.status_code == 502

    def test_capture_unknown_order(self, client, customer_headers):
        response = client.post("/api/payment/paypal/capture", json={"paypal_order_id": "NOPE"}, headers=customer_headers)

        assert response.status_code == 404


class TestSSLCommerz:
    def test_init_session(self, client, db, provider, card_order_id, customer_headers):
        provider.add("POST", "/gwprocess/v4/api.php", json={
            "status": "SUCCESS",
            "sessionkey": "SESS-1",
            "GatewayPageURL": "https://sslcommerz.test/pay/SESS-1",
        })

        response = client.post("/api/payment/sslcommerz/init", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.json()["gateway_url"] == "https://sslcommerz.test/pay/SESS-1"
        form = parse_qs(provider.requests[0].content.decode())
        assert form["total_amount"] == ["72.00"]
        assert form["cus_email"] == ["jane@example.com"]
        assert db.get(Order, card_order_id).payment_reference == "SESS-1"

    def test_init_failed(self, client, provider, card_order_id, customer_headers):
        provider.add("POST", "/gwprocess/v4/api.php", json={"status": "FAILED", "failedreason": "Invalid store"})

        response = client.post("/api/payment/sslcommerz/init", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Failed to initialize payment"

    def test_rejected_request_is_gateway_error(self, client, db, provider, card_order_id, customer_headers):
        provider.add("POST", "/gwprocess/v4/api.php", status=403, text="<html>Forbidden</html>")

        response = client.post("/api/payment/sslcommerz/init", json={"order_id": card_order_id}, headers=customer_headers)

        assert response.status_code == 502
        assert response.json()["error"] == "sslcommerz init failed"
        assert db.get(Order, card_order_id).payment_reference is None
