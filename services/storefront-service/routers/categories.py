"""Categories API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_catalog_service
from schemas import CategoryResponse, ProductResponse
from services.catalog_service import CatalogService

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("")
async def list_categories(db: Session = Depends(get_db), catalog: CatalogService = Depends(get_catalog_service)):
    categories = catalog.list_categories(db)
    return {"success": True, "categories": [CategoryResponse.model_validate(category) for category in categories]}


@router.get("/{slug}")
async def get_category(slug: str, db: Session = Depends(get_db), catalog: CatalogService = Depends(get_catalog_service)):
    """Category with its active products."""
    category, products = catalog.get_category(db, slug)
    return {
        "success": True,
        "category": CategoryResponse.model_validate(category),
        "products": [ProductResponse.model_validate(product) for product in products],
    }
