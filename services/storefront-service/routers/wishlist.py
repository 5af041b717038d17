"""Wishlist API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal
from database import get_db
from dependencies import get_wishlist_service
from schemas import ProductResponse, WishlistAddRequest
from services.wishlist_service import WishlistService

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


def _serialize(items):
    return [
        {"id": item.id, "added_at": item.created_at, "product": ProductResponse.model_validate(item.product)}
        for item in items
    ]


@router.get("")
async def get_wishlist(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    wishlist: WishlistService = Depends(get_wishlist_service)
):
    return {"success": True, "items": _serialize(wishlist.list_items(db, principal.id))}


@router.post("", status_code=201)
async def add_to_wishlist(
    request: WishlistAddRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    wishlist: WishlistService = Depends(get_wishlist_service)
):
    wishlist.add(db, principal.id, request.product_id)
    return {"success": True, "items": _serialize(wishlist.list_items(db, principal.id))}


@router.delete("/{product_id}")
async def remove_from_wishlist(
    product_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    wishlist: WishlistService = Depends(get_wishlist_service)
):
    wishlist.remove(db, principal.id, product_id)
    return {"success": True, "items": _serialize(wishlist.list_items(db, principal.id))}
