"""Products API router."""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from opentelemetry import trace
from sqlalchemy.orm import Session

from auth import Principal, require_admin
from database import get_db
from dependencies import get_catalog_service
from schemas import ProductCreate, ProductResponse, ProductUpdate
from services.catalog_service import CatalogService

router = APIRouter(prefix="/api/products", tags=["products"])

SortOption = Literal["newest", "price_asc", "price_desc", "popular", "rating"]


@router.get("")
async def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = None,
    sort: SortOption = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    List active products.

    Examples:
    - GET /api/products?category=electronics&sort=price_asc
    - GET /api/products?search=desk&max_price=500
    """
    result = catalog.list_products(
        db,
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        featured=featured,
        sort=sort,
        page=page,
        limit=limit
    )

    span = trace.get_current_span()
    span.set_attribute("product.count", len(result["products"]))
    span.set_attribute("endpoint.type", "product_catalog")

    return {
        "success": True,
        "products": [ProductResponse.model_validate(product) for product in result["products"]],
        "pagination": result["pagination"],
    }


@router.get("/featured")
async def featured_products(
    limit: int = Query(8, ge=1, le=50),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    products = catalog.featured_products(db, limit=limit)
    return {"success": True, "products": [ProductResponse.model_validate(product) for product in products]}


@router.get("/search")
async def search_products(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    products = catalog.search_products(db, q, limit=limit)
    return {"success": True, "products": [ProductResponse.model_validate(product) for product in products]}


@router.get("/{identifier}")
async def get_product(
    identifier: str,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details by id or slug."""
    product = catalog.get_product(db, identifier)
    return {"success": True, "product": ProductResponse.model_validate(product)}


@router.post("", status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    product = catalog.create_product(db, request)
    return {"success": True, "product": ProductResponse.model_validate(product)}


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    request: ProductUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    product = catalog.update_product(db, product_id, request)
    return {"success": True, "product": ProductResponse.model_validate(product)}


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    catalog.delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully"}
