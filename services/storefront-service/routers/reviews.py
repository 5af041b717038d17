"""Public and customer review endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal
from database import get_db
from dependencies import get_review_service
from schemas import ReviewCreate, ReviewResponse
from services.review_service import ReviewService

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.get("/product/{product_id}")
async def product_reviews(
    product_id: int,
    db: Session = Depends(get_db),
    reviews: ReviewService = Depends(get_review_service)
):
    """Approved reviews of a product."""
    items = reviews.approved_for_product(db, product_id)
    return {
        "success": True,
        "reviews": [
            {**ReviewResponse.model_validate(review).model_dump(), "author": review.user.name}
            for review in items
        ],
    }


@router.post("", status_code=201)
async def create_review(
    request: ReviewCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    reviews: ReviewService = Depends(get_review_service)
):
    review = reviews.create_review(db, principal, request)
    return {
        "success": True,
        "message": "Review submitted for moderation",
        "review": ReviewResponse.model_validate(review),
    }
