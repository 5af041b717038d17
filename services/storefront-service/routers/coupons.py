"""Coupons API router."""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal, require_admin
from database import get_db
from dependencies import get_coupon_service
from schemas import CouponCreate, CouponResponse, CouponUpdate, CouponValidateRequest
from services.coupon_service import CouponService

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.post("/validate")
async def validate_coupon(
    request: CouponValidateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    """Check a coupon against a prospective subtotal; nothing is redeemed."""
    result = coupon_service.validate(db, request.code, principal.id, request.subtotal)
    return {"success": True, "coupon": result}


@router.get("")
async def list_coupons(
    active: Optional[bool] = None,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    coupons = coupon_service.list_coupons(db, active=active)
    return {"success": True, "coupons": [CouponResponse.model_validate(coupon) for coupon in coupons]}


@router.post("", status_code=201)
async def create_coupon(
    request: CouponCreate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    coupon = coupon_service.create(db, request)
    return {"success": True, "coupon": CouponResponse.model_validate(coupon)}


@router.get("/{coupon_id}")
async def get_coupon(
    coupon_id: int,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    return {"success": True, "coupon": CouponResponse.model_validate(coupon_service.get(db, coupon_id))}


@router.put("/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    request: CouponUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    coupon = coupon_service.update(db, coupon_id, request)
    return {"success": True, "coupon": CouponResponse.model_validate(coupon)}


@router.delete("/{coupon_id}")
async def delete_coupon(
    coupon_id: int,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    coupon_service.delete(db, coupon_id)
    return {"success": True, "message": "Coupon deleted successfully"}
