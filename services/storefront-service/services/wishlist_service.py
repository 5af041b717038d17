"""Customer wishlists."""
from typing import List

from sqlalchemy.orm import Session

from errors import NotFoundError
from models import Product, WishlistItem


class WishlistService:

    def list_items(self, db: Session, user_id: int) -> List[WishlistItem]:
        return (
            db.query(WishlistItem)
            .filter(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
            .all()
        )

    def add(self, db: Session, user_id: int, product_id: int) -> WishlistItem:
        """Add a product; adding one already on the list is a no-op."""
        product = db.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product not found")

        item = db.query(WishlistItem).filter(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        ).first()
        if item is None:
            item = WishlistItem(user_id=user_id, product_id=product_id)
            db.add(item)
            db.commit()
            db.refresh(item)
        return item

    def remove(self, db: Session, user_id: int, product_id: int) -> None:
        deleted = db.query(WishlistItem).filter(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        ).delete(synchronize_session=False)
        if not deleted:
            raise NotFoundError("Product not in wishlist")
        db.commit()
