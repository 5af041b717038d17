"""Cart management service."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis
from opentelemetry import trace
from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import BusinessRuleError, InsufficientStockError, NotFoundError, ProductUnavailableError
from models import CartItem, Product, User
from monitoring import cart_additions_counter
from services.pricing import round_money

logger = logging.getLogger(__name__)

CART_CACHE_TTL = 3600


@dataclass(frozen=True)
class CartOwner:
    """A cart belongs to a registered user or to an anonymous session."""
    user_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def cache_key(self) -> str:
        if self.user_id is not None:
            return f"cart:user:{self.user_id}"
        return f"cart:session:{self.session_id}"

    def filter(self, query):
        if self.user_id is not None:
            return query.filter(CartItem.user_id == self.user_id)
        return query.filter(CartItem.session_id == self.session_id)


class CartService:
    """Service for managing shopping carts."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize cart service.

        Args:
            redis_client: Redis client for the per-cart line counter
        """
        self.redis_client = redis_client
        self.tracer = trace.get_tracer(__name__)

    def add_to_cart(
        self,
        db: Session,
        owner: CartOwner,
        product_id: int,
        quantity: int,
        variant: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Add item to a cart, merging with an existing line for the same product and variant.

        Raises:
            NotFoundError: If the product does not exist
            ProductUnavailableError: If the product is inactive
            InsufficientStockError: If stock cannot cover the resulting quantity
        """
        span = trace.get_current_span()
        span.set_attribute("product.id", product_id)
        span.set_attribute("quantity", quantity)

        product = db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if not product.is_active:
            raise ProductUnavailableError("Product is not available")

        existing = next(
            (item for item in self.get_cart_items(db, owner)
             if item.product_id == product_id and (item.variant or None) == (variant or None)),
            None
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        if product.stock < new_quantity:
            if existing:
                raise InsufficientStockError(f"Cannot add more. Only {product.stock} available")
            raise InsufficientStockError(f"Insufficient stock. Only {product.stock} available")

        with self.tracer.start_as_current_span("db.query.upsert_cart_item") as db_span:
            db_span.set_attribute("db.table", "cart_items")
            if existing:
                db_span.set_attribute("db.operation", "UPDATE")
                existing.quantity = new_quantity
                existing.updated_at = datetime.utcnow()
            else:
                db_span.set_attribute("db.operation", "INSERT")
                db.add(CartItem(
                    user_id=owner.user_id,
                    session_id=owner.session_id if owner.user_id is None else None,
                    product_id=product_id,
                    quantity=quantity,
                    price=product.price,
                    variant=variant
                ))
            db.commit()

        cart_additions_counter.add(1, {"product_id": str(product_id)})
        logger.info("Added product to cart", extra={
            "user_id": owner.user_id,
            "session_id": owner.session_id,
            "product_id": product_id,
            "product_name": product.name,
            "quantity": quantity
        })

        cart = self.get_cart(db, owner)
        self._cache_line_count(owner, len(cart["items"]))
        return cart

    def update_item(self, db: Session, owner: CartOwner, item_id: int, quantity: int) -> Dict[str, Any]:
        """
        Set the quantity of a cart line.

        Raises:
            NotFoundError: If the line or its product does not exist
            InsufficientStockError: If stock cannot cover the quantity
        """
        item = self._get_owned_item(db, owner, item_id)
        product = db.get(Product, item.product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if product.stock < quantity:
            raise InsufficientStockError(f"Insufficient stock. Only {product.stock} available")

        item.quantity = quantity
        item.updated_at = datetime.utcnow()
        db.commit()
        return self.get_cart(db, owner)

    def remove_item(self, db: Session, owner: CartOwner, item_id: int) -> Dict[str, Any]:
        item = self._get_owned_item(db, owner, item_id)
        db.delete(item)
        db.commit()

        cart = self.get_cart(db, owner)
        self._cache_line_count(owner, len(cart["items"]))
        return cart

    def get_cart(self, db: Session, owner: CartOwner) -> Dict[str, Any]:
        """
        Get cart contents.

        Line prices are the prices captured when each item was added.

        Returns:
            Cart contents with items, line count and total
        """
        items = []
        total = 0.0

        for item in self.get_cart_items(db, owner):
            line_total = round_money(item.price * item.quantity)
            total += line_total
            items.append({
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name if item.product else "",
                "price": item.price,
                "quantity": item.quantity,
                "variant": item.variant,
                "subtotal": line_total
            })

        return {
            "items": items,
            "item_count": sum(item["quantity"] for item in items),
            "total": round_money(total)
        }

    def clear_cart(self, db: Session, owner: CartOwner, commit: bool = True) -> None:
        """
        Delete every line of a cart.

        Args:
            commit: False when called inside a larger transaction
        """
        with self.tracer.start_as_current_span("db.query.delete_cart_items") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "cart_items")

            deleted_count = owner.filter(db.query(CartItem)).delete(synchronize_session=False)

            db_span.set_attribute("db.rows_affected", deleted_count)

        if commit:
            db.commit()
            self.invalidate_cache(owner)

    def get_cart_items(self, db: Session, owner: CartOwner) -> List[CartItem]:
        with self.tracer.start_as_current_span("db.query.get_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")

            cart_items = owner.filter(db.query(CartItem)).order_by(CartItem.id).all()

            db_span.set_attribute("db.rows_returned", len(cart_items))
            return cart_items

    def abandoned_carts(self, db: Session, older_than_hours: int) -> List[Dict[str, Any]]:
        """Carts whose most recent change is older than the threshold, with their value."""
        cutoff = datetime.utcnow() - timedelta(hours=older_than_hours)
        rows = (
            db.query(
                CartItem.user_id,
                CartItem.session_id,
                func.max(CartItem.updated_at).label("last_activity"),
                func.sum(CartItem.quantity).label("item_count"),
                func.sum(CartItem.price * CartItem.quantity).label("value"),
            )
            .group_by(CartItem.user_id, CartItem.session_id)
            .having(func.max(CartItem.updated_at) < cutoff)
            .all()
        )

        user_ids = [row.user_id for row in rows if row.user_id is not None]
        emails = {}
        if user_ids:
            emails = dict(db.query(User.id, User.email).filter(User.id.in_(user_ids)).all())

        return [
            {
                "user_id": row.user_id,
                "email": emails.get(row.user_id),
                "session_id": row.session_id,
                "last_activity": row.last_activity,
                "item_count": int(row.item_count or 0),
                "value": round_money(row.value or 0.0),
            }
            for row in rows
        ]

    def invalidate_cache(self, owner: CartOwner) -> None:
        try:
            self.redis_client.delete(owner.cache_key)
        except redis.RedisError as e:
            logger.warning("Cart cache invalidation failed", extra={"key": owner.cache_key, "error": str(e)})

    def cached_line_count(self, owner: CartOwner) -> Optional[int]:
        try:
            value = self.redis_client.get(owner.cache_key)
        except redis.RedisError:
            return None
        return int(value) if value is not None else None

    def _cache_line_count(self, owner: CartOwner, count: int) -> None:
        with self.tracer.start_as_current_span("cache.set") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.key", owner.cache_key)
            try:
                self.redis_client.set(owner.cache_key, count, ex=CART_CACHE_TTL)
            except redis.RedisError as e:
                logger.warning("Cart cache update failed", extra={"key": owner.cache_key, "error": str(e)})

    def _get_owned_item(self, db: Session, owner: CartOwner, item_id: int) -> CartItem:
        item = owner.filter(db.query(CartItem)).filter(CartItem.id == item_id).first()
        if item is None:
            raise NotFoundError("Item not found in cart")
        return item


def resolve_cart_owner(user_id: Optional[int], session_id: Optional[str]) -> CartOwner:
    """
    Cart owner for a request.

    Raises:
        BusinessRuleError: If the caller is neither authenticated nor carries a session id
    """
    if user_id is not None:
        return CartOwner(user_id=user_id)
    if session_id:
        return CartOwner(session_id=session_id)
    raise BusinessRuleError("Authentication or a session id is required")
