"""
Businesses

Tenants of the platform. A super admin onboards a business together with
its owner, who receives an invitation link to set a password.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.cache import invalidate_catalog
from stallfront.core.config import get_settings
from stallfront.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from stallfront.core.permissions import ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.models import (
    Business,
    BusinessStatus,
    MagicLinkPurpose,
    Order,
    OrderStatus,
    Product,
    Stall,
    User,
    UserStatus,
    as_utc,
    utcnow,
)
from stallfront.schemas import BusinessCreate, BusinessUpdate
from stallfront.services.accounts import create_magic_link, get_user_by_email, magic_link_url, normalize_email
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.services.notifications import get_notification_service
from stallfront.services.order_validation import to_local

logger = logging.getLogger(__name__)


async def list_businesses(db: AsyncSession, session: SessionData, status: Optional[str] = None) -> list[Business]:
    """Super admins see every business; everyone else only their own."""
    query = select(Business)
    if not session.is_super_admin:
        if not session.business_id:
            return []
        query = query.where(Business.id == session.business_id)
    if status:
        query = query.where(Business.status == status)
    result = await db.execute(query.order_by(Business.name))
    return list(result.scalars().all())


async def get_business(db: AsyncSession, session: SessionData, business_id: str) -> Business:
    ensure_business_access(session, business_id)
    business = await db.get(Business, business_id)
    if business is None:
        raise NotFoundError("Business not found")
    return business


async def create_business(
    db: AsyncSession, session: SessionData, request: BusinessCreate, ip_address: Optional[str] = None
) -> tuple[Business, User]:
    """Onboard a business and invite its owner."""
    if not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can onboard businesses")

    settings = get_settings()
    owner_email = normalize_email(request.owner_email)
    if await get_user_by_email(db, owner_email) is not None:
        raise ConflictError("A user with the owner email already exists")

    business = Business(
        name=request.name.strip(),
        description=request.description,
        currency=(request.currency or settings.default_currency).upper(),
        timezone=request.timezone or settings.default_timezone,
        status=BusinessStatus.ACTIVE.value,
        settings_json="{}",
    )
    db.add(business)
    await db.flush()

    owner = User(
        email=owner_email,
        name=request.owner_name.strip(),
        business_id=business.id,
        status=UserStatus.INVITED.value,
        invited_by=session.user_id,
        password_change_required=True,
    )
    owner.roles = ["business_owner"]
    db.add(owner)
    await db.flush()
    business.owner_user_id = owner.id

    link = create_magic_link(db, owner_email, MagicLinkPurpose.INVITE, owner.id)
    log_activity(db, ActivityAction.BUSINESS_CREATED, user_id=session.user_id, entity_type="business",
                 entity_id=business.id, details={"name": business.name, "owner_email": owner_email},
                 ip_address=ip_address)
    await db.commit()
    invalidate_catalog()

    logger.info(f"Business onboarded: {business.name} ({business.id}), owner {owner_email}")
    await get_notification_service().notify_invite(
        owner_email, owner.name, business.name, owner.roles, magic_link_url(link)
    )
    return business, owner


async def update_business(
    db: AsyncSession, session: SessionData, business_id: str, request: BusinessUpdate
) -> Business:
    await require_permission(db, session, "business:update")
    business = await get_business(db, session, business_id)

    changes = request.model_dump(exclude_none=True)
    if "name" in changes:
        business.name = changes["name"].strip()
    if "description" in changes:
        business.description = changes["description"]
    if "currency" in changes:
        business.currency = changes["currency"].upper()
    if "timezone" in changes:
        business.timezone = changes["timezone"]
    if "settings" in changes:
        business.settings = {**business.settings, **changes["settings"]}
    business.updated_at = utcnow()

    log_activity(db, ActivityAction.BUSINESS_UPDATED, user_id=session.user_id, entity_type="business",
                 entity_id=business.id, details={"fields": sorted(changes)})
    await db.commit()
    invalidate_catalog()
    return business


async def set_business_status(
    db: AsyncSession, session: SessionData, business_id: str, status: BusinessStatus | str
) -> Business:
    """Enable, disable or approve a business (super admin only)."""
    if not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can change business status")
    try:
        status = BusinessStatus(status)
    except ValueError:
        raise ValidationFailedError(f"Invalid business status: {status}")

    business = await db.get(Business, business_id)
    if business is None:
        raise NotFoundError("Business not found")

    previous = business.status
    business.status = status.value
    business.updated_at = utcnow()
    log_activity(db, ActivityAction.BUSINESS_STATUS, user_id=session.user_id, entity_type="business",
                 entity_id=business.id, details={"from": previous, "to": status.value})
    await db.commit()
    invalidate_catalog()
    logger.info(f"Business {business.id} status {previous} -> {status.value}")
    return business


async def business_dashboard(db: AsyncSession, session: SessionData, business_id: Optional[str] = None) -> dict[str, Any]:
    """Headline numbers for the business home page."""
    business_id = business_id or session.business_id
    business = await get_business(db, session, business_id)

    counts = await db.execute(
        select(Order.status, func.count()).where(Order.business_id == business.id).group_by(Order.status)
    )
    orders_by_status = {s.value: 0 for s in OrderStatus}
    orders_by_status.update({row[0]: row[1] for row in counts})

    # Today in the business's own timezone
    local_now = to_local(utcnow(), business.timezone)
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    result = await db.execute(
        select(Order).where(
            Order.business_id == business.id,
            Order.status != OrderStatus.CANCELLED.value,
            Order.created_at >= as_utc(day_start),
        )
    )
    today = list(result.scalars().all())

    stall_count = (await db.execute(
        select(func.count()).select_from(Stall).where(Stall.business_id == business.id)
    )).scalar_one()
    product_count = (await db.execute(
        select(func.count()).select_from(Product).where(Product.business_id == business.id)
    )).scalar_one()

    return {
        "business_id": business.id,
        "business_name": business.name,
        "currency": business.currency,
        "orders_by_status": orders_by_status,
        "total_orders": sum(orders_by_status.values()),
        "pending_orders": orders_by_status[OrderStatus.PENDING.value],
        "today_orders": len(today),
        "today_revenue_cents": sum(o.total_cents for o in today),
        "stall_count": stall_count,
        "product_count": product_count,
    }
