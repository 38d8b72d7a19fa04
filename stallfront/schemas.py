"""
Pydantic Schemas for Request/Response Validation

Money is always in integer cents. Datetimes are ISO-8601; naive values are
treated as UTC.

Version: 1.0.0
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from stallfront.models import DeliveryOption, OrderStatus, PaymentMethod


# =============================================================================
# AUTH REQUESTS
# =============================================================================

class CustomerSignupRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120, examples=["Amina Otieno"])
    phone: Optional[str] = Field(None, max_length=20)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SetPasswordRequest(BaseModel):
    """Consumes a signup, invite or password-reset magic link."""
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class EmailOnlyRequest(BaseModel):
    email: EmailStr


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=10)


class InviteRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    roles: list[str] = Field(..., min_length=1)
    business_id: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)


# =============================================================================
# CART
# =============================================================================

class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=99)
    scheduled_for: Optional[datetime] = None
    special_instructions: Optional[str] = Field(None, max_length=500)


class CartItemUpdate(BaseModel):
    product_id: str
    quantity: int = Field(..., le=99)
    scheduled_for: Optional[datetime] = None


# =============================================================================
# ORDERS
# =============================================================================

class OrderItemInput(BaseModel):
    """Line submitted by a customer; the unit price must match the catalog."""
    product_id: str
    stall_id: Optional[str] = None
    quantity: int = Field(..., ge=1, le=99)
    unit_price_cents: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class CustomerOrderCreate(BaseModel):
    items: list[OrderItemInput] = Field(default_factory=list)
    scheduled_for: Optional[datetime] = None
    delivery_option: DeliveryOption = DeliveryOption.PICKUP
    delivery_address: Optional[str] = Field(None, max_length=255)
    delivery_instructions: Optional[str] = Field(None, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=1000)


class StaffOrderItem(BaseModel):
    product_id: str
    qty: int = Field(..., ge=1, le=999)
    notes: Optional[str] = None


class StaffOrderCreate(BaseModel):
    business_id: str
    stall_id: str
    scheduled_for: datetime
    items: list[StaffOrderItem] = Field(..., min_length=1)
    customer_user_id: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=1000)
    estimated_ready_time: Optional[datetime] = None
    cancelled_reason: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    scheduled_for: datetime


class RateOrderRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class CustomerOrderUpdate(BaseModel):
    items: Optional[list[OrderItemInput]] = None
    notes: Optional[str] = Field(None, max_length=1000)
    delivery_option: Optional[DeliveryOption] = None
    delivery_address: Optional[str] = Field(None, max_length=255)
    delivery_instructions: Optional[str] = Field(None, max_length=500)


# =============================================================================
# CATALOG
# =============================================================================

class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    owner_email: EmailStr
    owner_name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None


class BusinessUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None
    settings: Optional[dict[str, Any]] = None


class DayHours(BaseModel):
    open: str = Field("08:00", pattern=r"^\d{2}:\d{2}$")
    close: str = Field("20:00", pattern=r"^\d{2}:\d{2}$")
    closed: bool = False


class StallCreate(BaseModel):
    business_id: str
    name: str = Field(..., min_length=1, max_length=120)
    description: str = ""
    pickup_address: str = ""
    cuisine_type: Optional[str] = None
    open_hours: dict[str, DayHours] = Field(default_factory=dict)
    capacity_per_day: int = Field(0, ge=0)

    @field_validator("open_hours")
    @classmethod
    def lowercase_days(cls, v: dict[str, DayHours]) -> dict[str, DayHours]:
        return {day.lower(): hours for day, hours in v.items()}


class StallUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    pickup_address: Optional[str] = None
    cuisine_type: Optional[str] = None
    open_hours: Optional[dict[str, DayHours]] = None
    capacity_per_day: Optional[int] = Field(None, ge=0)
    status: Optional[Literal["active", "disabled"]] = None


class ProductCreate(BaseModel):
    stall_id: str
    business_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=120)
    short_desc: str = Field("", max_length=255)
    long_desc: str = ""
    price_cents: int = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    sku: str = ""
    tags: list[str] = Field(default_factory=list)
    diet_flags: list[str] = Field(default_factory=list)
    prep_time_minutes: int = Field(15, ge=0)
    inventory_qty: Optional[int] = Field(None, ge=0)
    image_urls: list[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    short_desc: Optional[str] = Field(None, max_length=255)
    long_desc: Optional[str] = None
    price_cents: Optional[int] = Field(None, gt=0)
    sku: Optional[str] = None
    tags: Optional[list[str]] = None
    diet_flags: Optional[list[str]] = None
    prep_time_minutes: Optional[int] = Field(None, ge=0)
    inventory_qty: Optional[int] = Field(None, ge=0)


class ImageUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=1000)


# =============================================================================
# USERS, ROLES, WEBHOOKS, ADMIN
# =============================================================================

class RolesUpdate(BaseModel):
    roles: list[str] = Field(..., min_length=1)


class UserStatusUpdate(BaseModel):
    status: Literal["active", "disabled", "pending", "invited"]


class CustomRoleCreate(BaseModel):
    role_name: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z][a-z0-9_]*$")
    permissions: list[str] = Field(..., min_length=1)
    business_id: Optional[str] = None


class WebhookCreate(BaseModel):
    url: str = Field(..., pattern=r"^https?://")
    events: list[str] = Field(..., min_length=1)
    business_id: Optional[str] = None


class WebhookUpdate(BaseModel):
    url: Optional[str] = Field(None, pattern=r"^https?://")
    events: Optional[list[str]] = None
    active: Optional[bool] = None


class ApprovalAction(BaseModel):
    entity_type: Literal["product", "business"]
    entity_id: str
    action: Literal["approve", "reject"]
    reason: Optional[str] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    phone: Optional[str] = None
    roles: list[str]
    business_id: Optional[str] = None
    status: str
    mfa_enabled: bool = False
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BusinessOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    owner_user_id: Optional[str] = None
    description: Optional[str] = None
    currency: str
    timezone: str
    status: str
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class StallOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    name: str
    description: str
    pickup_address: str
    cuisine_type: Optional[str] = None
    open_hours: dict[str, Any] = Field(default_factory=dict)
    capacity_per_day: int
    status: str
    created_at: Optional[datetime] = None
    is_open_now: Optional[bool] = None
    product_count: Optional[int] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    stall_id: str
    business_id: str
    title: str
    short_desc: str
    long_desc: str
    price_cents: int
    currency: str
    sku: str
    tags: list[str]
    diet_flags: list[str]
    prep_time_minutes: int
    inventory_qty: Optional[int] = None
    image_urls: list[str]
    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    product_title: str
    qty: int
    unit_price_cents: int
    total_price_cents: int
    notes: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reference: str
    business_id: str
    stall_id: str
    customer_user_id: str
    status: str
    scheduled_for: datetime
    delivery_option: str
    delivery_address: Optional[str] = None
    delivery_instructions: Optional[str] = None
    payment_method: str
    payment_status: str
    subtotal_cents: int
    delivery_fee_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    notes: Optional[str] = None
    status_notes: Optional[str] = None
    estimated_ready_time: Optional[datetime] = None
    actual_ready_time: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    customer_rating: Optional[int] = None
    customer_review: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[OrderItemOut] = Field(default_factory=list)
    stall_name: Optional[str] = None
    stall_cuisine: Optional[str] = None


class WebhookOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    url: str
    events: list[str]
    active: bool
    created_at: Optional[datetime] = None


class WebhookLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    webhook_id: Optional[str] = None
    url: str
    event: str
    status: str
    created_at: Optional[datetime] = None


class ActivityLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    user_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    success: bool
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    email_service: str
    timestamp: datetime
