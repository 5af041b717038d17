"""Cart API router.

Carts belong to the authenticated user, or to the anonymous session named by
the X-Session-Id header.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import Principal, require_admin
from config import ABANDONED_CART_HOURS
from database import get_db
from dependencies import get_cart_owner, get_cart_service
from schemas import AddToCartRequest, CartResponse, UpdateCartRequest
from services.cart_service import CartOwner, CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("")
async def get_cart(
    db: Session = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    cart_service: CartService = Depends(get_cart_service)
):
    return {"success": True, "cart": CartResponse(**cart_service.get_cart(db, owner))}


@router.post("/add")
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = cart_service.add_to_cart(
        db,
        owner,
        product_id=request.product_id,
        quantity=request.quantity,
        variant=request.variant.model_dump() if request.variant else None
    )
    return {"success": True, "message": "Item added to cart", "cart": CartResponse(**cart)}


@router.put("/update")
async def update_cart_item(
    request: UpdateCartRequest,
    db: Session = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = cart_service.update_item(db, owner, request.item_id, request.quantity)
    return {"success": True, "cart": CartResponse(**cart)}


@router.delete("/remove/{item_id}")
async def remove_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = cart_service.remove_item(db, owner, item_id)
    return {"success": True, "cart": CartResponse(**cart)}


@router.delete("/clear")
async def clear_cart(
    db: Session = Depends(get_db),
    owner: CartOwner = Depends(get_cart_owner),
    cart_service: CartService = Depends(get_cart_service)
):
    cart_service.clear_cart(db, owner)
    return {"success": True, "message": "Cart cleared"}


@router.get("/abandoned")
async def abandoned_carts(
    hours: int = ABANDONED_CART_HOURS,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    cart_service: CartService = Depends(get_cart_service)
):
    """Carts untouched for at least `hours` hours (admin)."""
    return {"success": True, "carts": cart_service.abandoned_carts(db, hours)}
