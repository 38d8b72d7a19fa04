"""
SQLAlchemy Database Models

Every entity is stored as a flat row. Nested data lives in JSON-encoded
text columns (``roles_json``, ``items_json``, ``settings_json``,
``open_hours_json``) and the helpers on each model decode them.

Statuses are stored as plain strings; the enums below are the accepted
values.

Version: 1.0.0
"""

import enum
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Index

from stallfront.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _csv(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


# =============================================================================
# STATUS VALUES
# =============================================================================

class UserStatus(str, enum.Enum):
    INVITED = "invited"
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class BusinessStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class StallStatus(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class ProductStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    ARCHIVED = "archived"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class DeliveryOption(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class MagicLinkPurpose(str, enum.Enum):
    SIGNUP = "signup"
    INVITE = "invite"
    PASSWORD_RESET = "password_reset"
    LOGIN = "login"


# =============================================================================
# ACCOUNTS
# =============================================================================

class User(Base):
    """Customers, business staff and platform admins share one table."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), nullable=True)
    hashed_password = Column(String(255), nullable=True)
    roles_json = Column(Text, nullable=False, default="[]")
    business_id = Column(String(36), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=UserStatus.PENDING.value, index=True)
    mfa_enabled = Column(Boolean, nullable=False, default=False)
    password_change_required = Column(Boolean, nullable=False, default=False)
    invited_by = Column(String(36), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def roles(self) -> list[str]:
        roles = _loads(self.roles_json, [])
        return roles if isinstance(roles, list) else []

    @roles.setter
    def roles(self, value: list[str]) -> None:
        self.roles_json = json.dumps(sorted(set(value)))

    def has_role(self, *names: str) -> bool:
        return any(name in self.roles for name in names)

    def __repr__(self):
        return f"<User {self.email} {self.roles_json} {self.status}>"


class RolePermission(Base):
    """Custom role definitions; ``business_id`` NULL means platform-wide."""
    __tablename__ = "roles_permissions"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), nullable=True, index=True)
    role_name = Column(String(50), nullable=False, index=True)
    permissions_csv = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def permissions(self) -> list[str]:
        return _csv(self.permissions_csv)


class MagicLink(Base):
    """Single-use emailed token for signup, invitations, resets and login."""
    __tablename__ = "magic_links"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    purpose = Column(String(20), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# =============================================================================
# CATALOG
# =============================================================================

class Business(Base):
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    owner_user_id = Column(String(36), nullable=True, index=True)
    description = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="KES")
    timezone = Column(String(64), nullable=False, default="Africa/Nairobi")
    status = Column(String(20), nullable=False, default=BusinessStatus.ACTIVE.value, index=True)
    settings_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def settings(self) -> dict:
        value = _loads(self.settings_json, {})
        return value if isinstance(value, dict) else {}

    @settings.setter
    def settings(self, value: dict) -> None:
        self.settings_json = json.dumps(value or {})


class Stall(Base):
    __tablename__ = "stalls"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=False, default="")
    pickup_address = Column(String(255), nullable=False, default="")
    cuisine_type = Column(String(60), nullable=True)
    open_hours_json = Column(Text, nullable=False, default="{}")
    capacity_per_day = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=StallStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def open_hours(self) -> dict:
        value = _loads(self.open_hours_json, {})
        return value if isinstance(value, dict) else {}

    @open_hours.setter
    def open_hours(self, value: dict) -> None:
        self.open_hours_json = json.dumps(value or {})


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    stall_id = Column(String(36), nullable=False, index=True)
    business_id = Column(String(36), nullable=False, index=True)
    title = Column(String(120), nullable=False)
    short_desc = Column(String(255), nullable=False, default="")
    long_desc = Column(Text, nullable=False, default="")
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="KES")
    sku = Column(String(64), nullable=False, default="")
    tags_csv = Column(Text, nullable=False, default="")
    diet_flags_csv = Column(Text, nullable=False, default="")
    prep_time_minutes = Column(Integer, nullable=False, default=15)
    inventory_qty = Column(Integer, nullable=True)  # NULL = not tracked
    image_urls_json = Column(Text, nullable=False, default="[]")
    status = Column(String(20), nullable=False, default=ProductStatus.DRAFT.value, index=True)
    created_by = Column(String(36), nullable=True)
    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def tags(self) -> list[str]:
        return _csv(self.tags_csv)

    @property
    def diet_flags(self) -> list[str]:
        return _csv(self.diet_flags_csv)

    @property
    def image_urls(self) -> list[str]:
        value = _loads(self.image_urls_json, [])
        return value if isinstance(value, list) else []

    @image_urls.setter
    def image_urls(self, value: list[str]) -> None:
        self.image_urls_json = json.dumps(value or [])


# =============================================================================
# ORDERING
# =============================================================================

class Cart(Base):
    __tablename__ = "carts"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), nullable=False, index=True)
    items_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    @property
    def items(self) -> list[dict]:
        value = _loads(self.items_json, [])
        return value if isinstance(value, list) else []

    @items.setter
    def items(self, value: list[dict]) -> None:
        self.items_json = json.dumps(value or [])


class Order(Base):
    """
    Customer order placed against a single stall.

    Tracks the lifecycle from placement to fulfilment or cancellation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_stall_scheduled", "stall_id", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), nullable=False, index=True)
    stall_id = Column(String(36), nullable=False, index=True)
    customer_user_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)

    # =========================================================================
    # FULFILMENT
    # =========================================================================
    delivery_option = Column(String(20), nullable=False, default=DeliveryOption.PICKUP.value)
    delivery_address = Column(String(255), nullable=True)
    delivery_instructions = Column(Text, nullable=True)
    estimated_ready_time = Column(DateTime(timezone=True), nullable=True)
    actual_ready_time = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # PAYMENT
    # =========================================================================
    payment_method = Column(String(20), nullable=False, default=PaymentMethod.CASH.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String(100), nullable=True)

    # =========================================================================
    # PRICING (cents)
    # =========================================================================
    subtotal_cents = Column(Integer, nullable=False, default=0)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="KES")

    # =========================================================================
    # NOTES & FEEDBACK
    # =========================================================================
    notes = Column(Text, nullable=True)
    status_notes = Column(Text, nullable=True)
    cancelled_reason = Column(Text, nullable=True)
    customer_rating = Column(Integer, nullable=True)
    customer_review = Column(Text, nullable=True)
    notification_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def reference(self) -> str:
        """Short human-facing order number."""
        return self.id[-8:].upper()

    def __repr__(self):
        return f"<Order {self.reference} - {self.stall_id} - {self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), nullable=False, index=True)
    product_id = Column(String(36), nullable=False, index=True)
    product_title = Column(String(120), nullable=False, default="")
    qty = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    total_price_cents = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# =============================================================================
# INTEGRATIONS & AUDIT
# =============================================================================

class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    events_csv = Column(Text, nullable=False)
    secret = Column(String(128), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def events(self) -> list[str]:
        return _csv(self.events_csv)

    def subscribes_to(self, event: str) -> bool:
        return event in self.events or "*" in self.events


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    webhook_id = Column(String(36), nullable=True, index=True)
    business_id = Column(String(36), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    event = Column(String(60), nullable=False)
    status = Column(String(20), nullable=False)  # HTTP status code or "failed"
    payload_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ActivityLog(Base):
    """Audit trail of security and business events."""
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(60), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    entity_type = Column(String(30), nullable=True)
    entity_id = Column(String(36), nullable=True, index=True)
    details_json = Column(Text, nullable=False, default="{}")
    ip_address = Column(String(64), nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def details(self) -> dict:
        value = _loads(self.details_json, {})
        return value if isinstance(value, dict) else {}
