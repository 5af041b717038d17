"""Coupon validation, discount computation and redemption."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from errors import BusinessRuleError, InvalidCouponError, NotFoundError
from models import Coupon, CouponRedemption
from monitoring import coupon_rejections_counter
from schemas import CouponCreate, CouponUpdate
from services.pricing import round_money

logger = logging.getLogger(__name__)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def calculate_discount(coupon: Coupon, subtotal: float) -> float:
    """
    Discount granted by a coupon on a subtotal.

    Percentage coupons are capped by max_discount_amount when set; fixed
    coupons never exceed the subtotal. Orders under min_order_value get 0.
    """
    if coupon.min_order_value and subtotal < coupon.min_order_value:
        return 0.0

    if coupon.discount_type == "percentage":
        discount = subtotal * coupon.discount_value / 100
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = min(coupon.discount_value, subtotal)

    return round_money(discount)


class CouponService:
    """Service for coupon lookups and redemption."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def get_by_code(self, db: Session, code: str) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()
        if coupon is None:
            self._reject("unknown_code")
            raise NotFoundError("Invalid coupon code")
        return coupon

    def customer_usage(self, db: Session, coupon: Coupon, user_id: int) -> int:
        return db.query(func.count(CouponRedemption.id)).filter(
            CouponRedemption.coupon_id == coupon.id,
            CouponRedemption.user_id == user_id,
        ).scalar()

    def check_redeemable(
        self,
        db: Session,
        coupon: Coupon,
        user_id: int,
        subtotal: float,
        now: Optional[datetime] = None
    ) -> None:
        """
        Check the coupon's allowance for this customer and order.

        Raises:
            InvalidCouponError: If the coupon is inactive, outside its validity
                window, exhausted, used up by this customer, or the subtotal
                is below its minimum order value
        """
        now = now or datetime.utcnow()

        if not coupon.is_active or now < coupon.valid_from or now > coupon.valid_until:
            self._reject("expired")
            raise InvalidCouponError("Coupon has expired or is not active")

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            self._reject("usage_limit")
            raise InvalidCouponError("Coupon usage limit has been reached")

        if coupon.usage_per_customer is not None:
            if self.customer_usage(db, coupon, user_id) >= coupon.usage_per_customer:
                self._reject("customer_limit")
                raise InvalidCouponError("You have reached the usage limit for this coupon")

        if coupon.min_order_value and subtotal < coupon.min_order_value:
            self._reject("min_order_value")
            raise InvalidCouponError(
                f"Minimum order value of {coupon.min_order_value:.2f} required for this coupon"
            )

    def validate(self, db: Session, code: str, user_id: int, subtotal: float) -> Dict[str, Any]:
        """Validate a coupon for a prospective order without changing any state."""
        coupon = self.get_by_code(db, code)
        self.check_redeemable(db, coupon, user_id, subtotal)
        return {
            "code": coupon.code,
            "discount_type": coupon.discount_type,
            "discount_value": coupon.discount_value,
            "discount": calculate_discount(coupon, subtotal),
        }

    def redeem(self, db: Session, coupon: Coupon, user_id: int, order_id: int) -> None:
        """
        Record a redemption inside the caller's transaction.

        The usage counter is incremented with a single conditional UPDATE so
        concurrent checkouts cannot push it past usage_limit.

        Raises:
            InvalidCouponError: If the limit was reached concurrently
        """
        with self.tracer.start_as_current_span("db.query.redeem_coupon") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "coupons")
            db_span.set_attribute("coupon.code", coupon.code)

            updated = db.query(Coupon).filter(
                Coupon.id == coupon.id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            ).update(
                {Coupon.usage_count: Coupon.usage_count + 1},
                synchronize_session=False,
            )
            db_span.set_attribute("db.rows_affected", updated)

        if updated == 0:
            self._reject("usage_limit")
            raise InvalidCouponError("Coupon usage limit has been reached")

        db.add(CouponRedemption(coupon_id=coupon.id, user_id=user_id, order_id=order_id))

    # Admin management

    def list_coupons(self, db: Session, active: Optional[bool] = None) -> List[Coupon]:
        query = db.query(Coupon)
        if active is not None:
            query = query.filter(Coupon.is_active.is_(active))
        return query.order_by(Coupon.created_at.desc()).all()

    def get(self, db: Session, coupon_id: int) -> Coupon:
        coupon = db.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        return coupon

    def create(self, db: Session, payload: CouponCreate) -> Coupon:
        code = payload.code.strip().upper()
        if db.query(Coupon).filter(Coupon.code == code).first():
            raise BusinessRuleError("Coupon code already exists")

        data = payload.model_dump()
        data["code"] = code
        data["valid_from"] = _naive_utc(payload.valid_from)
        data["valid_until"] = _naive_utc(payload.valid_until)
        coupon = Coupon(**data)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info("Coupon created", extra={"code": code, "discount_type": coupon.discount_type})
        return coupon

    def update(self, db: Session, coupon_id: int, payload: CouponUpdate) -> Coupon:
        coupon = self.get(db, coupon_id)
        for field, value in payload.model_dump(exclude_unset=True).items():
            if field in ("valid_from", "valid_until"):
                value = _naive_utc(value)
            setattr(coupon, field, value)

        if coupon.valid_from >= coupon.valid_until:
            db.rollback()
            raise BusinessRuleError("valid_from must be before valid_until")

        db.commit()
        db.refresh(coupon)
        return coupon

    def delete(self, db: Session, coupon_id: int) -> None:
        coupon = self.get(db, coupon_id)
        db.query(CouponRedemption).filter(CouponRedemption.coupon_id == coupon.id).delete()
        db.delete(coupon)
        db.commit()

    @staticmethod
    def _reject(reason: str) -> None:
        coupon_rejections_counter.add(1, {"reason": reason})
