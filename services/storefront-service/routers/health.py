"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import SERVICE_NAME
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Liveness check."""
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/api/health/db")
async def database_health(db: Session = Depends(get_db)):
    """Readiness check: the database answers SELECT 1."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed", extra={"error": str(e)})
        return JSONResponse(status_code=503, content={"success": False, "error": "Database unavailable"})
    return {"success": True, "database": "connected"}
