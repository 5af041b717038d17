"""Payment provider endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal
from database import get_db
from dependencies import get_payment_service
from schemas import OrderResponse, PaymentOrderRequest, PayPalCaptureRequest
from services.payment_service import PaymentService

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/stripe/create-intent")
async def stripe_create_intent(
    request: PaymentOrderRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service)
):
    result = await payment_service.create_stripe_intent(db, request.order_id, principal)
    return {"success": True, **result}


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Stripe event receiver; the raw body is needed for signature verification."""
    payload = await request.body()
    result = await payment_service.handle_stripe_webhook(db, payload, stripe_signature)
    return {"success": True, **result}


@router.post("/paypal/create-order")
async def paypal_create_order(
    request: PaymentOrderRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service)
):
    result = await payment_service.create_paypal_order(db, request.order_id, principal)
    return {"success": True, **result}


@router.post("/paypal/capture")
async def paypal_capture(
    request: PayPalCaptureRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service)
):
    order = await payment_service.capture_paypal_order(db, request.paypal_order_id, principal)
    return {"success": True, "message": "Payment captured successfully", "order": OrderResponse.model_validate(order)}


@router.post("/sslcommerz/init")
async def sslcommerz_init(
    request: PaymentOrderRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service)
):
    result = await payment_service.init_sslcommerz(db, request.order_id, principal)
    return {"success": True, **result}
