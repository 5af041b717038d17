"""Dependency injection for services."""
from typing import Optional

import httpx
import redis
from fastapi import Depends, Header, Request

from auth import Principal, get_optional_principal
from services.account_service import AccountService
from services.campaign_service import CampaignService
from services.cart_service import CartOwner, CartService, resolve_cart_owner
from services.catalog_service import CatalogService
from services.content_service import ContentService
from services.coupon_service import CouponService
from services.email_service import AccountNotifier, EmailSender, OrderNotifier
from services.order_service import OrderService
from services.payment_gateways import PaymentGateways
from services.payment_service import PaymentService
from services.report_service import ReportService
from services.review_service import ReviewService
from services.wishlist_service import WishlistService


def get_redis(request: Request) -> redis.Redis:
    """Get Redis client from app state."""
    return request.app.state.redis_client


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_payment_gateways(request: Request) -> PaymentGateways:
    return PaymentGateways(get_http_client(request))


def get_cart_service(request: Request) -> CartService:
    """Get cart service instance."""
    return CartService(get_redis(request))


def get_cart_owner(
    principal: Optional[Principal] = Depends(get_optional_principal),
    x_session_id: Optional[str] = Header(None),
) -> CartOwner:
    """Cart owner: the authenticated user, else the X-Session-Id header."""
    return resolve_cart_owner(principal.id if principal else None, x_session_id)


def get_order_notifier(request: Request) -> OrderNotifier:
    return OrderNotifier(get_email_sender(request))


def get_account_service(request: Request) -> AccountService:
    return AccountService(AccountNotifier(get_email_sender(request)))


def get_order_service(request: Request) -> OrderService:
    """Get order service instance."""
    return OrderService(
        get_cart_service(request),
        CouponService(),
        get_order_notifier(request),
        get_payment_gateways(request)
    )


def get_payment_service(request: Request) -> PaymentService:
    return PaymentService(get_payment_gateways(request), get_order_notifier(request))


def get_campaign_service(request: Request) -> CampaignService:
    return CampaignService(get_email_sender(request))


def get_coupon_service() -> CouponService:
    return CouponService()


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_review_service() -> ReviewService:
    return ReviewService()


def get_wishlist_service() -> WishlistService:
    return WishlistService()


def get_report_service() -> ReportService:
    return ReportService()


def get_content_service() -> ContentService:
    return ContentService()
