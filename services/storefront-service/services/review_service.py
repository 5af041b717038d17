"""Product reviews and the rating aggregates derived from them."""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from auth import Principal
from errors import BusinessRuleError, NotFoundError
from models import Order, OrderItem, OrderStatus, Product, Review
from schemas import ReviewCreate

logger = logging.getLogger(__name__)


class ReviewService:
    """Service for customer reviews and their moderation."""

    def approved_for_product(self, db: Session, product_id: int) -> List[Review]:
        return (
            db.query(Review)
            .filter(Review.product_id == product_id, Review.status == "approved")
            .order_by(Review.created_at.desc(), Review.id.desc())
            .all()
        )

    def list_reviews(self, db: Session, status: Optional[str] = None) -> List[Review]:
        query = db.query(Review)
        if status:
            query = query.filter(Review.status == status)
        return query.order_by(Review.created_at.desc(), Review.id.desc()).all()

    def create_review(self, db: Session, principal: Principal, payload: ReviewCreate) -> Review:
        """
        Submit a review; it stays pending until moderated.

        Raises:
            NotFoundError: If the product does not exist or is inactive
            BusinessRuleError: If the customer already reviewed the product
        """
        product = db.get(Product, payload.product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product not found")

        existing = db.query(Review).filter(
            Review.product_id == product.id, Review.user_id == principal.id
        ).first()
        if existing is not None:
            raise BusinessRuleError("You have already reviewed this product")

        review = Review(
            product_id=product.id,
            user_id=principal.id,
            rating=payload.rating,
            title=payload.title,
            comment=payload.comment,
            status="pending",
            is_verified_purchase=self._has_delivered_purchase(db, principal.id, product.id),
        )
        db.add(review)
        db.commit()
        db.refresh(review)

        logger.info("Review submitted", extra={
            "review_id": review.id,
            "product_id": product.id,
            "verified": review.is_verified_purchase
        })
        return review

    def moderate(self, db: Session, review_id: int, status: str) -> Review:
        review = self._get(db, review_id)
        review.status = status
        db.flush()
        self.recompute_rating(db, review.product_id)
        db.commit()
        db.refresh(review)
        return review

    def delete(self, db: Session, review_id: int) -> None:
        review = self._get(db, review_id)
        product_id = review.product_id
        db.delete(review)
        db.flush()
        self.recompute_rating(db, product_id)
        db.commit()

    @staticmethod
    def recompute_rating(db: Session, product_id: int) -> None:
        """Set the product's rating and review count from its approved reviews."""
        average, count = (
            db.query(func.avg(Review.rating), func.count(Review.id))
            .filter(Review.product_id == product_id, Review.status == "approved")
            .one()
        )
        product = db.get(Product, product_id)
        if product is not None:
            product.rating = round(float(average), 1) if average is not None else 0.0
            product.review_count = count

    @staticmethod
    def _has_delivered_purchase(db: Session, user_id: int, product_id: int) -> bool:
        return db.query(OrderItem.id).join(Order, OrderItem.order_id == Order.id).filter(
            Order.user_id == user_id,
            Order.order_status == OrderStatus.DELIVERED,
            OrderItem.product_id == product_id,
        ).first() is not None

    @staticmethod
    def _get(db: Session, review_id: int) -> Review:
        review = db.get(Review, review_id)
        if review is None:
            raise NotFoundError("Review not found")
        return review
