"""Payment flows: starting provider payments and reconciling orders with their outcome."""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from opentelemetry import trace
from sqlalchemy.orm import Session

from auth import Principal
from errors import BusinessRuleError, NotFoundError, PermissionDeniedError
from models import Order, OrderStatus, PaymentStatus, User
from services.email_service import OrderNotifier
from services.payment_gateways import PaymentGateways

logger = logging.getLogger(__name__)

# Payment states a repeated success event must not overwrite
SETTLED_PAYMENT_STATUSES = {
    PaymentStatus.PAID,
    PaymentStatus.REFUND_PENDING,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED
}


class PaymentService:
    """Service coordinating orders with payment providers."""

    def __init__(self, gateways: PaymentGateways, notifier: OrderNotifier):
        self.gateways = gateways
        self.notifier = notifier

    async def create_stripe_intent(self, db: Session, order_id: int, principal: Principal) -> Dict[str, Any]:
        """
        Create a Stripe PaymentIntent for an unpaid order and store its id.

        Returns:
            Dict with the client secret and intent id
        """
        order = self._payable_order(db, order_id, principal)
        intent = await self.gateways.stripe.create_payment_intent(order)
        self._attach_reference(db, order, intent["id"])

        logger.info("Stripe payment intent created", extra={"order_id": order.id, "payment_intent": intent["id"]})
        return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}

    async def handle_stripe_webhook(self, db: Session, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Apply a verified Stripe event to its order.

        Raises:
            WebhookSignatureError: If the signature does not verify
        """
        event = self.gateways.stripe.construct_event(payload, signature)
        event_type = event.get("type")
        data = event.get("data", {}).get("object", {})

        span = trace.get_current_span()
        span.set_attribute("stripe.event_type", event_type or "")

        if event_type == "payment_intent.succeeded":
            order = self._order_for_intent(db, data)
            if order is not None and order.payment_status not in SETTLED_PAYMENT_STATUSES:
                await self._mark_paid(db, order, data["id"])
        elif event_type == "payment_intent.payment_failed":
            order = self._order_for_intent(db, data)
            if order is not None:
                message = (data.get("last_payment_error") or {}).get("message", "unknown error")
                order.payment_status = PaymentStatus.FAILED
                order.notes = f"{order.notes or ''}\nPayment failed: {message}".strip()
                db.commit()
                logger.warning("Stripe payment failed", extra={"order_id": order.id, "error": message})
        elif event_type == "charge.refunded":
            order = db.query(Order).filter(Order.payment_reference == data.get("payment_intent")).first()
            if order is not None:
                refunded = data.get("amount_refunded", 0) / 100
                order.refund_amount = max(order.refund_amount or 0.0, refunded)
                order.refunded_at = datetime.utcnow()
                order.payment_status = (
                    PaymentStatus.REFUNDED
                    if data.get("amount_refunded", 0) >= data.get("amount", 0)
                    else PaymentStatus.PARTIALLY_REFUNDED
                )
                db.commit()
                logger.info("Stripe charge refunded", extra={"order_id": order.id, "amount": refunded})
        else:
            logger.info("Ignoring Stripe event", extra={"event_type": event_type})

        return {"received": True}

    async def create_paypal_order(self, db: Session, order_id: int, principal: Principal) -> Dict[str, Any]:
        order = self._payable_order(db, order_id, principal)
        paypal_order = await self.gateways.paypal.create_order(order)
        self._attach_reference(db, order, paypal_order["id"])

        logger.info("PayPal order created", extra={"order_id": order.id, "paypal_order_id": paypal_order["id"]})
        return {"paypal_order_id": paypal_order["id"], "approve_url": paypal_order["approve_url"]}

    async def capture_paypal_order(self, db: Session, paypal_order_id: str, principal: Principal) -> Order:
        """
        Capture an approved PayPal order and mark the store order paid.

        Capturing an order that is already paid returns it unchanged.

        Raises:
            NotFoundError: If no order carries this PayPal reference
            BusinessRuleError: If the order was cancelled before capture
            PaymentDeclinedError: If PayPal does not complete the capture
        """
        order = db.query(Order).filter(Order.payment_reference == paypal_order_id).first()
        if order is None:
            raise NotFoundError("Order not found")
        if not principal.is_admin and order.user_id != principal.id:
            raise PermissionDeniedError("Unauthorized access")
        if order.payment_status in SETTLED_PAYMENT_STATUSES:
            return order
        if order.order_status == OrderStatus.CANCELLED:
            raise BusinessRuleError("Order has been cancelled")

        await self.gateways.paypal.capture(paypal_order_id)
        await self._mark_paid(db, order, paypal_order_id)
        return order

    async def init_sslcommerz(self, db: Session, order_id: int, principal: Principal) -> Dict[str, Any]:
        order = self._payable_order(db, order_id, principal)
        user = db.get(User, principal.id)
        session = await self.gateways.sslcommerz.init_session(
            order, principal.name, principal.email, user.phone if user else None
        )
        self._attach_reference(db, order, session["sessionkey"])

        logger.info("SSLCommerz session initialized", extra={"order_id": order.id})
        return {"gateway_url": session["gateway_url"], "sessionkey": session["sessionkey"]}

    def _payable_order(self, db: Session, order_id: int, principal: Principal) -> Order:
        """
        Load an order the caller may start a payment for.

        Raises:
            NotFoundError: If the order does not exist
            PermissionDeniedError: If the caller does not own it
            BusinessRuleError: If it is paid, cancelled, or has a live payment attempt
        """
        order = db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.user_id != principal.id:
            raise PermissionDeniedError("Unauthorized access")
        if order.order_status == OrderStatus.CANCELLED:
            raise BusinessRuleError("Order has been cancelled")
        if order.payment_status == PaymentStatus.PAID:
            raise BusinessRuleError("Order is already paid")
        if order.payment_reference and order.payment_status != PaymentStatus.FAILED:
            raise BusinessRuleError("Payment already initiated for this order")
        return order

    @staticmethod
    def _attach_reference(db: Session, order: Order, reference: str) -> None:
        order.payment_reference = reference
        order.payment_status = PaymentStatus.PENDING
        db.commit()

    @staticmethod
    def _order_for_intent(db: Session, intent: Dict[str, Any]) -> Optional[Order]:
        order_id = (intent.get("metadata") or {}).get("order_id")
        if order_id and str(order_id).isdigit():
            order = db.get(Order, int(order_id))
            if order is not None:
                return order
        order = db.query(Order).filter(Order.payment_reference == intent.get("id")).first()
        if order is None:
            logger.warning("Stripe event for unknown order", extra={"payment_intent": intent.get("id")})
        return order

    async def _mark_paid(self, db: Session, order: Order, reference: str) -> None:
        """Record a successful payment; money taken for a cancelled order is queued for refund."""
        order.payment_reference = reference
        if order.order_status == OrderStatus.CANCELLED:
            order.payment_status = PaymentStatus.REFUND_PENDING
            db.commit()
            logger.warning("Payment received for cancelled order", extra={
                "order_id": order.id,
                "payment_method": order.payment_method,
                "payment_reference": reference
            })
            return

        order.payment_status = PaymentStatus.PAID
        if order.order_status == OrderStatus.PENDING:
            order.order_status = OrderStatus.CONFIRMED
        db.commit()
        db.refresh(order)

        logger.info("Order paid", extra={
            "order_id": order.id,
            "payment_method": order.payment_method,
            "total": order.total
        })
        await self.notifier.order_confirmation(order, order.user.email)
