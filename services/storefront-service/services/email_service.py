"""Transactional and marketing email delivery.

Messages go through an email provider's HTTP API (Resend-compatible
`POST /emails`). Without an API key configured the log-only sender is used,
which is what local development runs with.
"""
import html
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from config import (
    APP_URL,
    EMAIL_API_KEY,
    EMAIL_API_URL,
    EMAIL_FROM,
    EMAIL_VERIFICATION_TOKEN_HOURS,
    PASSWORD_RESET_TOKEN_HOURS,
    SITE_NAME,
)
from errors import EmailDeliveryError
from models import Order, User
from monitoring import emails_sent_counter

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Abstract interface for email delivery."""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> str:
        """
        Deliver one message.

        Returns:
            Provider message id

        Raises:
            EmailDeliveryError: If the provider did not accept the message
        """


class HttpEmailSender(EmailSender):
    """Sender backed by the provider's HTTP API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str = EMAIL_API_KEY,
        api_url: str = EMAIL_API_URL,
        sender: str = EMAIL_FROM
    ):
        self.http_client = http_client
        self.api_key = api_key
        self.api_url = api_url
        self.sender = sender

    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {"from": self.sender, "to": [to], "subject": subject, "html": html_body}
        if text_body:
            payload["text"] = text_body

        try:
            response = await self.http_client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"}
            )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email provider unreachable: {e}") from e

        if response.status_code >= 400:
            raise EmailDeliveryError(f"Email provider returned {response.status_code}")
        return response.json().get("id", "")


class LogEmailSender(EmailSender):
    """Sender that only logs; used when no provider is configured."""

    async def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> str:
        logger.info("Email not sent (no provider configured)", extra={"to": to, "subject": subject})
        return "logged"


def build_email_sender(http_client: httpx.AsyncClient) -> EmailSender:
    if EMAIL_API_KEY:
        return HttpEmailSender(http_client)
    return LogEmailSender()


# Templates

def _money(amount: Optional[float]) -> str:
    return f"${(amount or 0):,.2f}"


def _layout(title: str, body: str) -> str:
    return (
        f"<html><body style=\"font-family: Arial, sans-serif\">"
        f"<h2>{html.escape(SITE_NAME)}</h2><h3>{html.escape(title)}</h3>{body}"
        f"<p><a href=\"{APP_URL}\">{html.escape(SITE_NAME)}</a></p></body></html>"
    )


def render_order_confirmation(order: Order) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(item.name)}</td><td>{item.quantity}</td><td>{_money(item.price)}</td></tr>"
        for item in order.items
    )
    address = order.shipping_address or {}
    body = (
        f"<p>Thank you for your order <strong>{order.order_number}</strong>.</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th></tr>{rows}</table>"
        f"<p>Subtotal: {_money(order.subtotal)}<br>Shipping: {_money(order.shipping)}<br>"
        f"Tax: {_money(order.tax)}<br>Discount: -{_money(order.discount)}<br>"
        f"<strong>Total: {_money(order.total)}</strong></p>"
        f"<p>Shipping to: {html.escape(address.get('full_name', ''))}, "
        f"{html.escape(address.get('address', ''))}, {html.escape(address.get('city', ''))}</p>"
        f"<p><a href=\"{APP_URL}/account/orders/{order.id}\">View your order</a></p>"
    )
    return _layout("Order confirmation", body)


def render_order_status(order: Order) -> str:
    body = f"<p>Your order <strong>{order.order_number}</strong> is now <strong>{order.order_status}</strong>.</p>"
    if order.tracking_number:
        body += f"<p>Tracking number: {html.escape(order.tracking_number)}"
        if order.courier_name:
            body += f" ({html.escape(order.courier_name)})"
        body += "</p>"
    return _layout("Order update", body)


def render_order_cancelled(order: Order) -> str:
    body = f"<p>Your order <strong>{order.order_number}</strong> has been cancelled.</p>"
    if order.payment_status == "refund_pending":
        body += f"<p>A refund of {_money(order.total)} will be issued to your original payment method.</p>"
    return _layout("Order cancelled", body)


def render_refund(order: Order, amount: float) -> str:
    body = (
        f"<p>We have refunded {_money(amount)} for order <strong>{order.order_number}</strong>.</p>"
        f"<p>Reason: {html.escape(order.refund_reason or '')}</p>"
    )
    return _layout("Refund processed", body)


def render_password_reset(user: User, token: str) -> str:
    link = f"{APP_URL}/auth/reset-password?token={token}"
    body = (
        f"<p>Hi {html.escape(user.name)},</p>"
        f"<p>We received a request to reset your password. The link below is valid for "
        f"{PASSWORD_RESET_TOKEN_HOURS} hour(s) and can be used once.</p>"
        f"<p><a href=\"{link}\">Reset your password</a></p>"
        f"<p>If you did not ask for this, you can ignore this email.</p>"
    )
    return _layout("Reset your password", body)


def render_email_verification(user: User, token: str) -> str:
    link = f"{APP_URL}/auth/verify-email?token={token}"
    body = (
        f"<p>Welcome, {html.escape(user.name)}!</p>"
        f"<p>Please confirm your email address within {EMAIL_VERIFICATION_TOKEN_HOURS} hours.</p>"
        f"<p><a href=\"{link}\">Verify your email</a></p>"
    )
    return _layout("Verify your email", body)


class Notifier:
    """
    Best-effort delivery of transactional email.

    Delivery failures are logged and counted, and reported only through the
    boolean result; callers never see the exception.
    """

    def __init__(self, email_sender: EmailSender):
        self.email_sender = email_sender

    async def _deliver(self, kind: str, to: str, subject: str, body: str, **context: Any) -> bool:
        try:
            await self.email_sender.send(to, subject, body)
        except Exception as e:
            emails_sent_counter.add(1, {"kind": kind, "status": "failed"})
            logger.error("Failed to send email", extra={"kind": kind, **context, "error": str(e)})
            return False

        emails_sent_counter.add(1, {"kind": kind, "status": "sent"})
        logger.info("Email sent", extra={"kind": kind, **context})
        return True


class OrderNotifier(Notifier):
    """Customer notifications about orders."""

    async def order_confirmation(self, order: Order, to: str) -> bool:
        return await self._deliver(
            "order_confirmation", to, f"Order Confirmation - {order.order_number}",
            render_order_confirmation(order), order_id=order.id
        )

    async def order_status(self, order: Order, to: str) -> bool:
        return await self._deliver(
            "order_status", to, f"Order {order.order_number} is {order.order_status}",
            render_order_status(order), order_id=order.id
        )

    async def order_cancelled(self, order: Order, to: str) -> bool:
        return await self._deliver(
            "order_cancelled", to, f"Order {order.order_number} cancelled",
            render_order_cancelled(order), order_id=order.id
        )

    async def refund_processed(self, order: Order, to: str, amount: float) -> bool:
        return await self._deliver(
            "refund", to, f"Refund for order {order.order_number}",
            render_refund(order, amount), order_id=order.id
        )


class AccountNotifier(Notifier):
    """Account security emails carrying single-use links."""

    async def password_reset(self, user: User, token: str) -> bool:
        return await self._deliver(
            "password_reset", user.email, "Reset Your Password",
            render_password_reset(user, token), user_id=user.id
        )

    async def email_verification(self, user: User, token: str) -> bool:
        return await self._deliver(
            "email_verification", user.email, "Verify Your Email Address",
            render_email_verification(user, token), user_id=user.id
        )
