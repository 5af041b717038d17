"""Reporting API router (admin)."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import require_admin
from database import get_db
from dependencies import get_report_service
from services.report_service import ReportService

router = APIRouter(prefix="/api/reports", tags=["reports"], dependencies=[Depends(require_admin)])


@router.get("/sales")
async def sales_report(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    reports: ReportService = Depends(get_report_service)
):
    return {"success": True, "report": reports.sales_report(db, days=days)}


@router.get("/products")
async def product_report(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    reports: ReportService = Depends(get_report_service)
):
    return {"success": True, "products": reports.product_report(db, limit=limit)}


@router.get("/customers")
async def customer_report(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    reports: ReportService = Depends(get_report_service)
):
    return {"success": True, "customers": reports.customer_report(db, limit=limit)}
