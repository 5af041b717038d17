"""Catalog service: products, categories and inventory."""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace
from sqlalchemy import or_
from sqlalchemy.orm import Session

from errors import NotFoundError
from models import Category, Product
from monitoring import product_views_counter
from schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price.asc(), Product.id.asc()),
    "price_desc": (Product.price.desc(), Product.id.asc()),
    "popular": (Product.sales_count.desc(), Product.id.asc()),
    "rating": (Product.rating.desc(), Product.review_count.desc()),
}


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


class CatalogService:
    """Service for browsing and managing the product catalog."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def list_products(
        self,
        db: Session,
        category: Optional[str] = None,
        search: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        featured: Optional[bool] = None,
        sort: str = "newest",
        page: int = 1,
        limit: int = 12
    ) -> Dict[str, Any]:
        """
        List active products.

        Args:
            category: Category slug
            search: Case-insensitive text matched against name and description
            sort: One of newest, price_asc, price_desc, popular, rating

        Returns:
            Products and pagination info
        """
        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            query = db.query(Product).filter(Product.is_active.is_(True))
            if category:
                query = query.join(Category, Product.category_id == Category.id).filter(Category.slug == category)
            if search:
                pattern = f"%{search.strip()}%"
                query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
            if min_price is not None:
                query = query.filter(Product.price >= min_price)
            if max_price is not None:
                query = query.filter(Product.price <= max_price)
            if featured is not None:
                query = query.filter(Product.is_featured.is_(featured))

            total_count = query.count()
            products = (
                query.order_by(*SORT_ORDERS.get(sort, SORT_ORDERS["newest"]))
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(products))

        return {
            "products": products,
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total_count,
                "total_pages": (total_count + limit - 1) // limit,
            },
        }

    def featured_products(self, db: Session, limit: int = 8) -> List[Product]:
        return (
            db.query(Product)
            .filter(Product.is_active.is_(True), Product.is_featured.is_(True))
            .order_by(Product.sales_count.desc(), Product.id.asc())
            .limit(limit)
            .all()
        )

    def search_products(self, db: Session, text: str, limit: int = 20) -> List[Product]:
        return self.list_products(db, search=text, sort="popular", limit=limit)["products"]

    def get_product(self, db: Session, identifier: str, count_view: bool = True) -> Product:
        """
        Get an active product by id or slug, counting the view.

        Raises:
            NotFoundError: If no active product matches
        """
        query = db.query(Product).filter(Product.is_active.is_(True))
        if identifier.isdigit():
            product = query.filter(Product.id == int(identifier)).first()
        else:
            product = query.filter(Product.slug == identifier).first()
        if product is None:
            raise NotFoundError("Product not found")

        if count_view:
            db.query(Product).filter(Product.id == product.id).update(
                {Product.view_count: Product.view_count + 1},
                synchronize_session=False,
            )
            db.commit()
            db.refresh(product)
            product_views_counter.add(1, {"category_id": str(product.category_id)})

        span = trace.get_current_span()
        span.set_attribute("product.id", product.id)
        return product

    def create_product(self, db: Session, payload: ProductCreate) -> Product:
        self._check_category(db, payload.category_id)
        product = Product(**payload.model_dump(), slug=self._unique_slug(db, payload.name))
        db.add(product)
        db.commit()
        db.refresh(product)

        logger.info("Product created", extra={"product_id": product.id, "slug": product.slug})
        return product

    def update_product(self, db: Session, product_id: int, payload: ProductUpdate) -> Product:
        product = self._get_any(db, product_id)
        changes = payload.model_dump(exclude_unset=True)
        if "category_id" in changes:
            self._check_category(db, changes["category_id"])
        for field, value in changes.items():
            setattr(product, field, value)
        db.commit()
        db.refresh(product)

        logger.info("Product updated", extra={"product_id": product.id, "fields": sorted(changes)})
        return product

    def delete_product(self, db: Session, product_id: int) -> None:
        """Soft delete: the product stays referenced by past orders."""
        product = self._get_any(db, product_id)
        product.is_active = False
        db.commit()
        logger.info("Product deactivated", extra={"product_id": product.id})

    def list_categories(self, db: Session) -> List[Category]:
        return db.query(Category).filter(Category.is_active.is_(True)).order_by(Category.name).all()

    def get_category(self, db: Session, slug: str) -> Tuple[Category, List[Product]]:
        category = db.query(Category).filter(Category.slug == slug, Category.is_active.is_(True)).first()
        if category is None:
            raise NotFoundError("Category not found")
        products = (
            db.query(Product)
            .filter(Product.category_id == category.id, Product.is_active.is_(True))
            .order_by(Product.name)
            .all()
        )
        return category, products

    def inventory(self, db: Session, low_stock: bool = False) -> List[Product]:
        """Stock levels of all products; low_stock keeps those at or under their threshold."""
        query = db.query(Product)
        if low_stock:
            query = query.filter(Product.stock <= Product.low_stock_threshold)
        return query.order_by(Product.stock.asc(), Product.id.asc()).all()

    def _get_any(self, db: Session, product_id: int) -> Product:
        product = db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    @staticmethod
    def _check_category(db: Session, category_id: Optional[int]) -> None:
        if category_id is not None and db.get(Category, category_id) is None:
            raise NotFoundError("Category not found")

    @staticmethod
    def _unique_slug(db: Session, name: str) -> str:
        base = slugify(name)
        slug, suffix = base, 2
        while db.query(Product.id).filter(Product.slug == slug).first() is not None:
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug
