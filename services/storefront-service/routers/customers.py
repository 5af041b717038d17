"""Customer and inventory listings for administrators."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import require_admin
from database import get_db
from dependencies import get_catalog_service, get_report_service
from schemas import ProductResponse
from services.catalog_service import CatalogService
from services.report_service import ReportService

router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/customers")
async def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    reports: ReportService = Depends(get_report_service)
):
    """Customers with order count and total spent."""
    return {"success": True, **reports.list_customers(db, page=page, limit=limit)}


@router.get("/inventory")
async def inventory(
    low_stock: bool = False,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Stock levels; low_stock=true keeps products at or under their threshold."""
    products = catalog.inventory(db, low_stock=low_stock)
    return {"success": True, "products": [ProductResponse.model_validate(product) for product in products]}
