"""Orders API router."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal, require_admin
from database import get_db
from dependencies import get_order_service
from schemas import CancelOrderRequest, CreateOrderRequest, OrderResponse, OrderStatusUpdate, RefundRequest
from services.order_service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order - requires authentication."""
    order = await order_service.create_order(db, principal, request)
    return {"success": True, "order": OrderResponse.model_validate(order)}


@router.get("")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    order_service: OrderService = Depends(get_order_service)
):
    """Customers get their own orders, admins every order."""
    result = order_service.list_orders(db, principal, page=page, limit=limit, status=status)
    return {
        "success": True,
        "orders": [OrderResponse.model_validate(order) for order in result["orders"]],
        "pagination": result["pagination"],
    }


@router.get("/track")
async def track_order(
    order_number: str = Query(..., min_length=1),
    email: str = Query(..., min_length=3),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Public order tracking by order number and customer email."""
    order = order_service.track_order(db, order_number, email)
    return {
        "success": True,
        "order": {
            "order_number": order.order_number,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
            "total": order.total,
            "tracking_number": order.tracking_number,
            "courier_name": order.courier_name,
            "tracking_url": order.tracking_url,
            "created_at": order.created_at,
            "delivered_at": order.delivered_at,
            "items": [{"name": item.name, "quantity": item.quantity} for item in order.items],
        },
    }


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.get_order(db, order_id, principal)
    return {"success": True, "order": OrderResponse.model_validate(order)}


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    request: Optional[CancelOrderRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    order_service: OrderService = Depends(get_order_service)
):
    """Cancel an order (owner or admin); stock is restored."""
    reason = request.reason if request else None
    order = await order_service.cancel_order(db, order_id, principal, reason)
    return {"success": True, "message": "Order cancelled successfully", "order": OrderResponse.model_validate(order)}


@router.post("/{order_id}/refund")
async def refund_order(
    order_id: int,
    request: RefundRequest,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    order = await order_service.refund_order(db, order_id, request.amount, request.reason, admin)
    return {"success": True, "message": "Refund processed successfully", "order": OrderResponse.model_validate(order)}


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: int,
    request: OrderStatusUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    order = await order_service.update_status(db, order_id, request, admin)
    return {"success": True, "order": OrderResponse.model_validate(order)}
