"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

PaymentMethod = Literal["card", "stripe", "paypal", "sslcommerz", "cash_on_delivery"]
OrderStatusValue = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned"]
RecipientType = Literal["all", "subscribers", "customers", "custom"]


class Variant(BaseModel):
    name: str
    value: str


class Address(BaseModel):
    """Postal address captured on an order."""
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


# Auth

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    phone: Optional[str] = None
    newsletter: bool = False


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    newsletter: bool = False
    email_verified: bool = False
    created_at: Optional[datetime] = None


# Catalog

class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    sku: Optional[str] = None
    price: float = Field(..., ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    category_id: Optional[int] = None
    images: List[str] = []
    tags: List[str] = []
    variants: List[Dict[str, Any]] = []
    is_featured: bool = False
    is_active: bool = True


class ProductUpdate(BaseModel):
    """Partial product update; only supplied fields change."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    category_id: Optional[int] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    variants: Optional[List[Dict[str, Any]]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    sku: Optional[str] = None
    description: Optional[str] = None
    price: float
    compare_price: Optional[float] = None
    stock: int
    low_stock_threshold: int
    category_id: Optional[int] = None
    images: List[str] = []
    tags: List[str] = []
    variants: List[Dict[str, Any]] = []
    is_featured: bool
    is_active: bool
    rating: float
    review_count: int
    sales_count: int


# Cart

class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: int
    quantity: int = Field(..., ge=1)
    variant: Optional[Variant] = None


class UpdateCartRequest(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseModel):
    """Schema for cart item in response."""
    id: int
    product_id: int
    product_name: str
    price: float
    quantity: int
    variant: Optional[Variant] = None
    subtotal: float


class CartResponse(BaseModel):
    """Schema for cart response."""
    items: List[CartItemResponse]
    item_count: int
    total: float


# Orders

class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    # Client-side price is informational; the live product price is charged.
    price: Optional[float] = Field(None, ge=0)
    variant: Optional[Variant] = None


class CreateOrderRequest(BaseModel):
    """Schema for order creation (checkout)."""
    items: List[OrderItemRequest] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    notes: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1)


class OrderStatusUpdate(BaseModel):
    order_status: OrderStatusValue
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    tracking_url: Optional[str] = None
    admin_notes: Optional[str] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    name: str
    sku: Optional[str] = None
    price: float
    quantity: int
    variant: Optional[Dict[str, Any]] = None


class OrderResponse(BaseModel):
    """Schema for order response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int
    items: List[OrderItemResponse]
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total: float
    coupon: Optional[Dict[str, Any]] = None
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    order_status: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    tracking_url: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime


# Coupons

class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_per_customer: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_from >= self.valid_until:
            raise ValueError("valid_from must be before valid_until")
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self


class CouponUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=200)
    discount_value: Optional[float] = Field(None, ge=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_per_customer: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    min_order_value: Optional[float] = None
    max_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    usage_count: int
    usage_per_customer: Optional[int] = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool


# Payments

class PaymentOrderRequest(BaseModel):
    order_id: int


class PayPalCaptureRequest(BaseModel):
    paypal_order_id: str = Field(..., min_length=1)


# Marketing

class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    subject: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    recipient_type: RecipientType
    recipient_emails: List[EmailStr] = []
    scheduled_at: Optional[datetime] = None


class CampaignUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    subject: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    recipient_type: Optional[RecipientType] = None
    recipient_emails: Optional[List[EmailStr]] = None
    scheduled_at: Optional[datetime] = None
    status: Optional[Literal["draft", "scheduled", "cancelled"]] = None


class CampaignResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    subject: str
    content: str
    status: str
    recipient_type: str
    recipient_emails: List[str] = []
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    total_recipients: int
    success_count: int
    failure_count: int


class NewsletterSubscribeRequest(BaseModel):
    email: EmailStr


# Reviews and wishlist

class ReviewCreate(BaseModel):
    product_id: int
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=1, max_length=2000)


class ReviewModerate(BaseModel):
    status: Literal["approved", "rejected"]


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    user_id: int
    rating: int
    title: Optional[str] = None
    comment: str
    status: str
    is_verified_purchase: bool
    created_at: datetime


class WishlistAddRequest(BaseModel):
    product_id: int


# Back office

class SettingsUpdate(BaseModel):
    values: Dict[str, Any]


class PageCreate(BaseModel):
    slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    title: str = Field(..., min_length=1)
    content: str = ""
    is_published: bool = True


class PageUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    is_published: Optional[bool] = None


class PageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    title: str
    content: str
    is_published: bool
    updated_at: Optional[datetime] = None
