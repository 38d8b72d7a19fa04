"""
Stalls

Staff manage the stalls of their own business. The public listing shows
active stalls of active businesses and is cached; every stall write drops
the cached listings.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.cache import invalidate_catalog, product_cache, stall_cache
from stallfront.core.exceptions import NotFoundError
from stallfront.core.permissions import ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.models import Business, BusinessStatus, Product, ProductStatus, Stall, StallStatus, utcnow
from stallfront.schemas import ProductOut, StallCreate, StallOut, StallUpdate
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.services.order_validation import is_stall_open

logger = logging.getLogger(__name__)

PUBLIC_LISTING_TTL = 60


async def list_stalls(
    db: AsyncSession,
    session: SessionData,
    business_id: Optional[str] = None,
    status: Optional[str] = None,
) -> list[Stall]:
    query = select(Stall)
    if session.is_super_admin:
        if business_id:
            query = query.where(Stall.business_id == business_id)
    else:
        ensure_business_access(session, business_id or session.business_id)
        query = query.where(Stall.business_id == session.business_id)
    if status:
        query = query.where(Stall.status == status)
    result = await db.execute(query.order_by(Stall.name))
    return list(result.scalars().all())


async def get_stall(db: AsyncSession, stall_id: str) -> Stall:
    stall = await db.get(Stall, stall_id)
    if stall is None:
        raise NotFoundError("Stall not found")
    return stall


async def _active_product_counts(db: AsyncSession, stall_ids: list[str]) -> dict[str, int]:
    if not stall_ids:
        return {}
    result = await db.execute(
        select(Product.stall_id, func.count())
        .where(Product.stall_id.in_(stall_ids), Product.status == ProductStatus.ACTIVE.value)
        .group_by(Product.stall_id)
    )
    return {row[0]: row[1] for row in result}


async def public_stalls(
    db: AsyncSession, search: Optional[str] = None, cuisine: Optional[str] = None
) -> list[dict[str, Any]]:
    """Active stalls of active businesses, with open-now flags and product counts."""
    search = (search or "").strip().lower()
    cuisine = (cuisine or "").strip().lower()
    key = f"stalls:public:{search}:{cuisine}"

    async def load() -> list[dict[str, Any]]:
        query = (
            select(Stall, Business.timezone)
            .join(Business, Business.id == Stall.business_id)
            .where(Stall.status == StallStatus.ACTIVE.value, Business.status == BusinessStatus.ACTIVE.value)
        )
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                func.lower(Stall.name).like(pattern),
                func.lower(Stall.cuisine_type).like(pattern),
                func.lower(Stall.description).like(pattern),
            ))
        if cuisine:
            query = query.where(func.lower(Stall.cuisine_type) == cuisine)

        rows = (await db.execute(query.order_by(Stall.name))).all()
        counts = await _active_product_counts(db, [stall.id for stall, _ in rows])

        listing = []
        for stall, tz_name in rows:
            out = StallOut.model_validate(stall)
            out.is_open_now = is_stall_open(stall, tz_name)
            out.product_count = counts.get(stall.id, 0)
            listing.append(out.model_dump(mode="json"))
        return listing

    return await stall_cache.get_or_set(key, load, ttl=PUBLIC_LISTING_TTL)


async def public_stall_detail(db: AsyncSession, stall_id: str) -> dict[str, Any]:
    """A stall and its active products, as shown to customers."""

    async def load() -> Optional[dict[str, Any]]:
        stall = await db.get(Stall, stall_id)
        if stall is None or stall.status != StallStatus.ACTIVE.value:
            return None
        business = await db.get(Business, stall.business_id)
        if business is None or business.status != BusinessStatus.ACTIVE.value:
            return None

        result = await db.execute(
            select(Product)
            .where(Product.stall_id == stall.id, Product.status == ProductStatus.ACTIVE.value)
            .order_by(Product.title)
        )
        products = [ProductOut.model_validate(p).model_dump(mode="json") for p in result.scalars()]

        out = StallOut.model_validate(stall)
        out.is_open_now = is_stall_open(stall, business.timezone)
        out.product_count = len(products)
        return {
            "stall": out.model_dump(mode="json"),
            "business": {"id": business.id, "name": business.name, "currency": business.currency},
            "products": products,
        }

    detail = await product_cache.get_or_set(f"products:stall:{stall_id}", load, ttl=PUBLIC_LISTING_TTL)
    if detail is None:
        raise NotFoundError("Stall not found")
    return detail


async def create_stall(db: AsyncSession, session: SessionData, request: StallCreate) -> Stall:
    await require_permission(db, session, "stall:create")
    ensure_business_access(session, request.business_id)
    if await db.get(Business, request.business_id) is None:
        raise NotFoundError("Business not found")

    stall = Stall(
        business_id=request.business_id,
        name=request.name.strip(),
        description=request.description,
        pickup_address=request.pickup_address,
        cuisine_type=request.cuisine_type,
        capacity_per_day=request.capacity_per_day,
        status=StallStatus.ACTIVE.value,
    )
    stall.open_hours = {day: hours.model_dump() for day, hours in request.open_hours.items()}
    db.add(stall)
    await db.flush()
    log_activity(db, ActivityAction.STALL_CREATED, user_id=session.user_id, entity_type="stall",
                 entity_id=stall.id, details={"name": stall.name, "business_id": stall.business_id})
    await db.commit()
    invalidate_catalog()
    logger.info(f"Stall created: {stall.name} ({stall.id})")
    return stall


async def update_stall(db: AsyncSession, session: SessionData, stall_id: str, request: StallUpdate) -> Stall:
    await require_permission(db, session, "stall:update")
    stall = await get_stall(db, stall_id)
    ensure_business_access(session, stall.business_id)

    changes = request.model_dump(exclude_none=True)
    for field_name in ("name", "description", "pickup_address", "cuisine_type", "capacity_per_day", "status"):
        if field_name in changes:
            setattr(stall, field_name, changes[field_name])
    if request.open_hours is not None:
        stall.open_hours = {day.lower(): hours.model_dump() for day, hours in request.open_hours.items()}
    stall.updated_at = utcnow()

    log_activity(db, ActivityAction.STALL_UPDATED, user_id=session.user_id, entity_type="stall",
                 entity_id=stall.id, details={"fields": sorted(changes)})
    await db.commit()
    invalidate_catalog()
    return stall


async def disable_stall(db: AsyncSession, session: SessionData, stall_id: str) -> Stall:
    """Stalls are never deleted; disabling hides them and stops new orders."""
    await require_permission(db, session, "stall:delete")
    stall = await get_stall(db, stall_id)
    ensure_business_access(session, stall.business_id)

    stall.status = StallStatus.DISABLED.value
    stall.updated_at = utcnow()
    log_activity(db, ActivityAction.STALL_DISABLED, user_id=session.user_id, entity_type="stall", entity_id=stall.id)
    await db.commit()
    invalidate_catalog()
    logger.info(f"Stall disabled: {stall.id}")
    return stall
