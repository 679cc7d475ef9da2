"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from storefront.models import OrderStatus, Role


class ORMModel(BaseModel):
    """Base for responses read straight off ORM rows."""
    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# --- Users & auth ---


class UserResponse(ORMModel):
    """Schema for user response."""
    id: str
    email: str
    name: str
    avatar: Optional[str] = ""
    role: str
    created_at: Optional[datetime] = None


class RegisterRequest(BaseModel):
    """Schema for registration request."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    """Login request model."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    """Token plus the authenticated user."""
    token: str
    token_type: str = "bearer"
    user: UserResponse


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    avatar: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: Role


class UsersListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    limit: int
    pages: int


# --- Addresses ---


class AddressCreate(BaseModel):
    """Schema for creating an address."""
    label: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: Optional[str] = None
    is_default: bool = False


class AddressUpdate(BaseModel):
    label: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class AddressResponse(ORMModel):
    id: str
    label: str
    name: str
    phone: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool


# --- Catalog ---


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    icon: Optional[str] = ""


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    icon: Optional[str] = None


class CategoryResponse(ORMModel):
    id: str
    name: str
    slug: str
    icon: Optional[str] = ""


class ProductImageResponse(ORMModel):
    id: str
    url: str
    position: int
    is_primary: bool


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)
    price_modifier: float = 0.0
    stock: int = Field(0, ge=0)
    sku: Optional[str] = ""


class VariantResponse(ORMModel):
    id: str
    name: str
    value: str
    price_modifier: float
    stock: int
    sku: Optional[str] = ""


class ReviewUserResponse(ORMModel):
    id: str
    name: str
    avatar: Optional[str] = ""


class ReviewResponse(ORMModel):
    id: str
    product_id: str
    rating: int
    comment: Optional[str] = ""
    created_at: Optional[datetime] = None
    user: Optional[ReviewUserResponse] = None


class ReviewCreate(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = ""


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = ""
    base_price: float = Field(..., gt=0)
    category_id: Optional[str] = None
    stock: int = Field(0, ge=0)
    is_active: bool = True
    is_featured: bool = False
    images: List[str] = []
    variants: List[VariantCreate] = []


class ProductUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    base_price: Optional[float] = Field(None, gt=0)
    category_id: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    images: Optional[List[str]] = None
    variants: Optional[List[VariantCreate]] = None


class ProductResponse(ORMModel):
    """Schema for product response."""
    id: str
    name: str
    slug: str
    description: Optional[str] = ""
    base_price: float
    stock: int
    is_active: bool
    is_featured: bool
    category_id: Optional[str] = None
    category: Optional[CategoryResponse] = None
    images: List[ProductImageResponse] = []
    created_at: Optional[datetime] = None


class ProductDetailResponse(ProductResponse):
    variants: List[VariantResponse] = []
    reviews: List[ReviewResponse] = []
    avg_rating: float = 0.0


class ProductsListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int
    pages: int


# --- Cart & wishlist ---


class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseModel):
    """Schema for cart item in response."""
    id: str
    product_id: str
    product_name: str
    product_slug: str
    variant_id: Optional[str] = None
    variant_info: str = ""
    unit_price: float
    quantity: int
    subtotal: float
    stock: int
    image_url: Optional[str] = None


class CartResponse(BaseModel):
    """Schema for cart response."""
    items: List[CartItemResponse]
    subtotal: float
    count: int


class AddToWishlistRequest(BaseModel):
    product_id: str


class WishlistItemResponse(ORMModel):
    id: str
    product_id: str
    created_at: Optional[datetime] = None
    product: ProductResponse


# --- Orders ---


class CreateOrderRequest(BaseModel):
    """Schema for placing an order from the cart."""
    address_id: str
    notes: Optional[str] = ""


class GuestOrderItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)


class GuestOrderRequest(BaseModel):
    """Schema for guest checkout."""
    guest_email: EmailStr
    guest_name: str = Field(..., min_length=1)
    guest_phone: str = Field(..., min_length=1)
    guest_address: str = Field(..., min_length=1)
    notes: Optional[str] = ""
    items: List[GuestOrderItem] = Field(..., min_length=1)


class TrackOrderRequest(BaseModel):
    order_number: str = Field(..., min_length=1)
    email: EmailStr


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class OrderItemResponse(ORMModel):
    id: str
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: str
    variant_info: Optional[str] = ""
    price: float
    quantity: int
    subtotal: float


class PaymentResponse(ORMModel):
    id: str
    order_id: str
    external_id: str
    status: str
    method: Optional[str] = ""
    amount: float
    session_token: Optional[str] = None
    redirect_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderResponse(ORMModel):
    """Schema for order response."""
    id: str
    order_number: str
    user_id: Optional[str] = None
    address_id: Optional[str] = None
    status: str
    subtotal: float
    shipping_fee: float
    total: float
    notes: Optional[str] = ""
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_address: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    latest_payment: Optional[PaymentResponse] = None


class OrderDetailResponse(OrderResponse):
    address: Optional[AddressResponse] = None
    user: Optional[UserResponse] = None


class OrdersListResponse(BaseModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]
    total: int
    page: int
    limit: int
    pages: int


# --- Payments ---


class PaymentSessionResponse(BaseModel):
    snap_token: str
    redirect_url: Optional[str] = None


class GuestPaymentRequest(BaseModel):
    order_number: str = Field(..., min_length=1)
    email: EmailStr


class PaymentNotification(BaseModel):
    """Webhook payload posted by the payment processor."""
    model_config = ConfigDict(extra="allow")

    order_id: str
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: str
    payment_type: Optional[str] = None


class NotificationAck(BaseModel):
    status: str = "ok"


# --- Admin ---


class DashboardResponse(BaseModel):
    total_users: int
    total_products: int
    total_orders: int
    total_revenue: float
    pending_orders: int
    recent_orders: List[OrderResponse]
