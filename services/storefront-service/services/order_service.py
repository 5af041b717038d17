"""Order management service.

Order creation and cancellation each run as one database transaction: every
stock movement, coupon redemption, cart change and order write commits
together or not at all. Customer emails are sent after commit and never
affect the outcome.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace
from sqlalchemy.orm import Session

from auth import Principal
from errors import (
    BusinessRuleError,
    InsufficientStockError,
    InvalidCouponError,
    InvalidStatusTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ProductUnavailableError,
    StoreError,
)
from models import Order, OrderItem, OrderStatus, PaymentStatus, Product, User
from monitoring import (
    coupon_redemptions_counter,
    order_amount_histogram,
    order_failures_counter,
    orders_cancelled_counter,
    orders_created_counter,
    refunds_counter,
)
from schemas import CreateOrderRequest, OrderStatusUpdate
from services.cart_service import CartOwner, CartService
from services.coupon_service import CouponService, calculate_discount
from services.email_service import OrderNotifier
from services.payment_gateways import PaymentGateways
from services.pricing import compute_totals, round_money

logger = logging.getLogger(__name__)

NON_CANCELLABLE_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED}
REFUNDABLE_PAYMENT_STATUSES = {PaymentStatus.PAID, PaymentStatus.REFUND_PENDING}
FULFILMENT_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]


def format_order_number(order_id: int, created_at: datetime) -> str:
    return f"ORD-{created_at.year}-{order_id:05d}"


class OrderService:
    """Service for managing orders."""

    def __init__(
        self,
        cart_service: CartService,
        coupon_service: CouponService,
        notifier: OrderNotifier,
        gateways: PaymentGateways
    ):
        """
        Initialize order service.

        Args:
            cart_service: Cart service instance
            coupon_service: Coupon service instance
            notifier: Customer email notifications
            gateways: Payment provider clients (refunds)
        """
        self.cart_service = cart_service
        self.coupon_service = coupon_service
        self.notifier = notifier
        self.gateways = gateways
        self.tracer = trace.get_tracer(__name__)

    async def create_order(self, db: Session, principal: Principal, request: CreateOrderRequest) -> Order:
        """
        Place an order.

        Args:
            db: Database session
            principal: Authenticated customer
            request: Validated checkout payload

        Returns:
            The persisted order

        Raises:
            ProductUnavailableError: If a product is missing or inactive
            InsufficientStockError: If stock cannot cover a requested quantity
            InvalidCouponError: If the coupon cannot be applied
            StoreError: On any other failure, after rolling back
        """
        span = trace.get_current_span()
        span.set_attribute("user.id", principal.id)
        span.set_attribute("payment.method", request.payment_method)
        span.set_attribute("order.item_count", len(request.items))

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order"):
                # Step 1: validate products and stock, freeze prices
                lines: List[Tuple[Product, Any]] = []
                subtotal = 0.0
                for item in request.items:
                    product = db.get(Product, item.product_id)
                    if product is None or not product.is_active:
                        raise ProductUnavailableError(f"Product {item.product_id} not found or inactive")
                    if product.stock < item.quantity:
                        raise InsufficientStockError(
                            f"Insufficient stock for {product.name}. Only {product.stock} available"
                        )
                    lines.append((product, item))
                    subtotal += product.price * item.quantity

                # Step 2: coupon
                coupon = None
                discount = 0.0
                coupon_snapshot = None
                if request.coupon_code:
                    try:
                        coupon = self.coupon_service.get_by_code(db, request.coupon_code)
                    except NotFoundError:
                        raise InvalidCouponError("Invalid coupon code")
                    self.coupon_service.check_redeemable(db, coupon, principal.id, subtotal)
                    discount = calculate_discount(coupon, subtotal)
                    coupon_snapshot = {
                        "code": coupon.code,
                        "discount_type": coupon.discount_type,
                        "discount_value": coupon.discount_value,
                    }

                totals = compute_totals(subtotal, discount)

                # Step 3: persist order, move stock, redeem coupon, clear cart
                shipping_address = request.shipping_address.model_dump()
                order = Order(
                    user_id=principal.id,
                    subtotal=totals.subtotal,
                    shipping=totals.shipping,
                    tax=totals.tax,
                    discount=totals.discount,
                    total=totals.total,
                    coupon=coupon_snapshot,
                    shipping_address=shipping_address,
                    billing_address=(
                        request.billing_address.model_dump() if request.billing_address else shipping_address
                    ),
                    payment_method=request.payment_method,
                    payment_status=PaymentStatus.PENDING,
                    order_status=OrderStatus.PENDING,
                    notes=request.notes,
                    created_at=datetime.utcnow(),
                )
                db.add(order)
                db.flush()
                order.order_number = format_order_number(order.id, order.created_at)

                for product, item in lines:
                    db.add(OrderItem(
                        order_id=order.id,
                        product_id=product.id,
                        name=product.name,
                        sku=product.sku,
                        price=product.price,
                        quantity=item.quantity,
                        variant=item.variant.model_dump() if item.variant else None,
                    ))
                    if not self._move_stock(db, product.id, -item.quantity):
                        raise InsufficientStockError(f"Insufficient stock for {product.name}")

                if coupon is not None:
                    self.coupon_service.redeem(db, coupon, principal.id, order.id)

                self.cart_service.clear_cart(db, CartOwner(user_id=principal.id), commit=False)

                db.commit()
        except StoreError as e:
            db.rollback()
            order_failures_counter.add(1, {"reason": type(e).__name__})
            logger.warning("Order rejected", extra={"user_id": principal.id, "error": e.message})
            raise
        except Exception as e:
            db.rollback()
            order_failures_counter.add(1, {"reason": "unexpected"})
            logger.error("Failed to create order", extra={"user_id": principal.id, "error": str(e)})
            raise StoreError("Failed to create order") from e

        db.refresh(order)
        self.cart_service.invalidate_cache(CartOwner(user_id=principal.id))

        orders_created_counter.add(1, {"payment_method": order.payment_method})
        order_amount_histogram.record(order.total, {"payment_method": order.payment_method})
        if coupon is not None:
            coupon_redemptions_counter.add(1, {"code": coupon.code})

        logger.info("Order created", extra={
            "user_id": principal.id,
            "order_id": order.id,
            "order_number": order.order_number,
            "total": order.total,
            "payment_method": order.payment_method,
            "item_count": len(lines)
        })

        await self.notifier.order_confirmation(order, principal.email)
        return order

    async def cancel_order(
        self,
        db: Session,
        order_id: int,
        principal: Principal,
        reason: Optional[str] = None
    ) -> Order:
        """
        Cancel an order and put its stock back.

        Stock and sales counters are restored by exactly the quantities the
        order took. A paid order moves to refund_pending; no provider refund
        is triggered here.

        Raises:
            NotFoundError: If the order does not exist
            PermissionDeniedError: If the caller neither owns the order nor is an admin
            InvalidStatusTransitionError: If the order can no longer be cancelled
        """
        try:
            with self.tracer.start_as_current_span("db.transaction.cancel_order"):
                order = self.get_order(db, order_id, principal)
                if order.order_status in NON_CANCELLABLE_STATUSES or order.payment_status == PaymentStatus.REFUNDED:
                    raise InvalidStatusTransitionError(f"Cannot cancel order with status: {order.order_status}")

                for item in order.items:
                    self._move_stock(db, item.product_id, item.quantity)

                order.order_status = OrderStatus.CANCELLED
                order.cancelled_at = datetime.utcnow()
                if reason:
                    order.notes = f"{order.notes or ''}\nCancellation reason: {reason}".strip()
                if order.payment_status == PaymentStatus.PAID:
                    order.payment_status = PaymentStatus.REFUND_PENDING

                db.commit()
        except StoreError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error("Failed to cancel order", extra={"order_id": order_id, "error": str(e)})
            raise StoreError("Failed to cancel order") from e

        db.refresh(order)
        orders_cancelled_counter.add(1, {"payment_status": order.payment_status})
        logger.info("Order cancelled", extra={
            "order_id": order.id,
            "cancelled_by": principal.id,
            "payment_status": order.payment_status
        })

        await self.notifier.order_cancelled(order, order.user.email)
        return order

    async def refund_order(self, db: Session, order_id: int, amount: float, reason: str, admin: Principal) -> Order:
        """
        Record a refund, requesting it from the payment provider when one holds the payment.

        Raises:
            NotFoundError: If the order does not exist
            InvalidStatusTransitionError: If the payment status does not allow a refund
            BusinessRuleError: If cumulative refunds would exceed the order total
            PaymentGatewayError: If the provider refund fails; nothing is recorded
        """
        order = self.get_order(db, order_id, admin)
        if order.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
            raise InvalidStatusTransitionError("Order payment status does not allow refund")

        refunded_so_far = order.refund_amount or 0.0
        new_refund_total = round_money(refunded_so_far + amount)
        if new_refund_total > order.total:
            raise BusinessRuleError("Refund amount cannot exceed order total")

        provider = self.gateways.refund_provider_for(order.payment_method) if order.payment_reference else None
        provider_refund_id = None
        if provider is not None:
            result = await provider.refund(order.payment_reference, amount, reason)
            provider_refund_id = result.get("id")
            logger.info("Provider refund issued", extra={
                "order_id": order.id,
                "provider": provider.name,
                "provider_refund_id": provider_refund_id,
                "amount": amount
            })

        try:
            order.refund_amount = new_refund_total
            order.refund_reason = reason
            order.refunded_at = datetime.utcnow()
            order.payment_status = (
                PaymentStatus.REFUNDED if new_refund_total >= order.total else PaymentStatus.PARTIALLY_REFUNDED
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Failed to record refund", extra={
                "order_id": order_id,
                "amount": amount,
                "provider_refund_id": provider_refund_id,
                "error": str(e)
            })
            raise StoreError("Failed to record refund", details={"provider_refund_id": provider_refund_id}) from e
        db.refresh(order)

        refunds_counter.add(1, {
            "payment_method": order.payment_method,
            "provider": provider.name if provider else "manual"
        })
        logger.info("Refund recorded", extra={
            "order_id": order.id,
            "amount": amount,
            "refund_total": new_refund_total,
            "payment_status": order.payment_status,
            "admin_id": admin.id
        })

        await self.notifier.refund_processed(order, order.user.email, amount)
        return order

    async def update_status(self, db: Session, order_id: int, update: OrderStatusUpdate, admin: Principal) -> Order:
        """
        Advance an order through fulfilment (admin).

        Statuses only move forward along pending, confirmed, processing,
        shipped, delivered; a delivered order may become returned. Cancellation
        goes through cancel_order so stock is restored.

        Raises:
            InvalidStatusTransitionError: For any other transition
        """
        order = self.get_order(db, order_id, admin)
        current, target = order.order_status, update.order_status

        has_tracking = any([update.tracking_number, update.courier_name, update.tracking_url])
        if update.tracking_number and target in FULFILMENT_SEQUENCE[:3]:
            target = OrderStatus.SHIPPED
        if target == OrderStatus.CANCELLED:
            raise InvalidStatusTransitionError("Use the cancel endpoint to cancel an order")
        if target != current or not has_tracking:
            if not self._is_forward_transition(current, target):
                raise InvalidStatusTransitionError(f"Cannot change order status from {current} to {target}")

        order.order_status = target
        if update.tracking_number:
            order.tracking_number = update.tracking_number
        if update.courier_name:
            order.courier_name = update.courier_name
        if update.tracking_url:
            order.tracking_url = update.tracking_url
        if update.admin_notes:
            order.admin_notes = update.admin_notes
        if target == OrderStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = datetime.utcnow()

        db.commit()
        db.refresh(order)
        logger.info("Order status updated", extra={
            "order_id": order.id,
            "from_status": current,
            "to_status": target,
            "admin_id": admin.id
        })

        if target != current:
            await self.notifier.order_status(order, order.user.email)
        return order

    def get_order(self, db: Session, order_id: int, principal: Principal) -> Order:
        """
        Load an order visible to the caller.

        Raises:
            NotFoundError: If the order does not exist
            PermissionDeniedError: If the caller neither owns it nor is an admin
        """
        order = db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not principal.is_admin and order.user_id != principal.id:
            raise PermissionDeniedError("Unauthorized access")
        return order

    def list_orders(
        self,
        db: Session,
        principal: Principal,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None
    ) -> Dict[str, Any]:
        """Admins see all orders, customers their own; newest first."""
        with self.tracer.start_as_current_span("db.query.list_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")

            query = db.query(Order)
            if not principal.is_admin:
                query = query.filter(Order.user_id == principal.id)
            if status:
                query = query.filter(Order.order_status == status)

            total_count = query.count()
            orders = (
                query.order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(orders))

        return {
            "orders": orders,
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total_count,
                "total_pages": (total_count + limit - 1) // limit,
            },
        }

    def track_order(self, db: Session, order_number: str, email: str) -> Order:
        """Public lookup by order number plus the customer's email."""
        order = (
            db.query(Order)
            .join(User, Order.user_id == User.id)
            .filter(Order.order_number == order_number.strip().upper(), User.email == email.strip().lower())
            .first()
        )
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _move_stock(self, db: Session, product_id: int, delta: int) -> bool:
        """
        Apply a stock delta and the opposite sales delta in one UPDATE.

        Decrements are conditional on enough stock remaining.

        Returns:
            False if a decrement found insufficient stock
        """
        with self.tracer.start_as_current_span("db.query.update_product_stock") as update_span:
            update_span.set_attribute("db.operation", "UPDATE")
            update_span.set_attribute("db.table", "products")
            update_span.set_attribute("product.id", product_id)
            update_span.set_attribute("stock.delta", delta)

            query = db.query(Product).filter(Product.id == product_id)
            if delta < 0:
                query = query.filter(Product.stock >= -delta)
            updated = query.update(
                {
                    Product.stock: Product.stock + delta,
                    Product.sales_count: Product.sales_count - delta,
                },
                synchronize_session=False,
            )
            update_span.set_attribute("db.rows_affected", updated)
            return updated == 1

    @staticmethod
    def _is_forward_transition(current: str, target: str) -> bool:
        if current == OrderStatus.DELIVERED and target == OrderStatus.RETURNED:
            return True
        if current not in FULFILMENT_SEQUENCE or target not in FULFILMENT_SEQUENCE:
            return False
        return FULFILMENT_SEQUENCE.index(target) > FULFILMENT_SEQUENCE.index(current)
