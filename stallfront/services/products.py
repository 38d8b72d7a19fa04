"""
Products

Menu items belong to a stall. New products start as drafts; a draft is
submitted for approval (pending) and goes live (active) once someone with
``product:approve`` approves or publishes it. Deleting archives.

    draft -> pending -> active -> archived -> draft
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.cache import invalidate_catalog
from stallfront.core.config import get_settings
from stallfront.core.exceptions import NotFoundError, ValidationFailedError
from stallfront.core.permissions import check_permission, ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.models import Business, Product, ProductStatus, Stall, utcnow
from stallfront.schemas import ProductCreate, ProductUpdate
from stallfront.services.activity import ActivityAction, log_activity

logger = logging.getLogger(__name__)

MAX_IMAGES = 10


def _csv(values: list[str]) -> str:
    return ",".join(v.strip() for v in values if v.strip())


async def list_products(
    db: AsyncSession,
    stall_id: Optional[str] = None,
    business_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 200,
) -> list[Product]:
    query = select(Product)
    if stall_id:
        query = query.where(Product.stall_id == stall_id)
    if business_id:
        query = query.where(Product.business_id == business_id)
    if status:
        query = query.where(Product.status == status)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(
            func.lower(Product.title).like(pattern),
            func.lower(Product.short_desc).like(pattern),
            func.lower(Product.tags_csv).like(pattern),
        ))
    result = await db.execute(query.order_by(Product.title).limit(limit))
    return list(result.scalars().all())


async def get_product(db: AsyncSession, product_id: str) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


async def _staff_product(db: AsyncSession, session: SessionData, product_id: str, permission: str) -> Product:
    await require_permission(db, session, permission)
    product = await get_product(db, product_id)
    ensure_business_access(session, product.business_id)
    return product


def _log(db: AsyncSession, session: SessionData, action: ActivityAction, product: Product, **details) -> None:
    log_activity(db, action, user_id=session.user_id, entity_type="product", entity_id=product.id, details=details)


async def create_product(db: AsyncSession, session: SessionData, request: ProductCreate) -> Product:
    await require_permission(db, session, "product:create")

    stall = await db.get(Stall, request.stall_id)
    if stall is None:
        raise NotFoundError("Stall not found")
    if request.business_id and request.business_id != stall.business_id:
        raise ValidationFailedError("Stall does not belong to this business")
    ensure_business_access(session, stall.business_id)

    business = await db.get(Business, stall.business_id)
    currency = request.currency or (business.currency if business else get_settings().default_currency)

    product = Product(
        stall_id=stall.id,
        business_id=stall.business_id,
        title=request.title.strip(),
        short_desc=request.short_desc,
        long_desc=request.long_desc,
        price_cents=request.price_cents,
        currency=currency.upper(),
        sku=request.sku,
        tags_csv=_csv(request.tags),
        diet_flags_csv=_csv(request.diet_flags),
        prep_time_minutes=request.prep_time_minutes,
        inventory_qty=request.inventory_qty,
        status=ProductStatus.DRAFT.value,
        created_by=session.user_id,
    )
    product.image_urls = request.image_urls[:MAX_IMAGES]
    db.add(product)
    await db.flush()
    _log(db, session, ActivityAction.PRODUCT_CREATED, product, title=product.title, stall_id=stall.id)
    await db.commit()
    invalidate_catalog()
    logger.info(f"Product created: {product.title} ({product.id}) at stall {stall.id}")
    return product


async def update_product(db: AsyncSession, session: SessionData, product_id: str, request: ProductUpdate) -> Product:
    product = await _staff_product(db, session, product_id, "product:update")

    changes = request.model_dump(exclude_unset=True)
    for field_name in ("title", "short_desc", "long_desc", "price_cents", "sku", "prep_time_minutes"):
        if changes.get(field_name) is not None:
            setattr(product, field_name, changes[field_name])
    if "inventory_qty" in changes:
        # Explicit null stops inventory tracking
        product.inventory_qty = changes["inventory_qty"]
    if request.tags is not None:
        product.tags_csv = _csv(request.tags)
    if request.diet_flags is not None:
        product.diet_flags_csv = _csv(request.diet_flags)
    product.updated_at = utcnow()

    _log(db, session, ActivityAction.PRODUCT_UPDATED, product, fields=sorted(changes))
    await db.commit()
    invalidate_catalog()
    return product


async def archive_product(db: AsyncSession, session: SessionData, product_id: str) -> Product:
    product = await _staff_product(db, session, product_id, "product:delete")
    product.status = ProductStatus.ARCHIVED.value
    product.updated_at = utcnow()
    _log(db, session, ActivityAction.PRODUCT_ARCHIVED, product)
    await db.commit()
    invalidate_catalog()
    return product


async def _set_status(
    db: AsyncSession, session: SessionData, product: Product, status: ProductStatus, **details
) -> Product:
    previous = product.status
    product.status = status.value
    product.updated_at = utcnow()
    if status == ProductStatus.ACTIVE:
        product.approved_by = session.user_id
        product.approved_at = utcnow()
    _log(db, session, ActivityAction.PRODUCT_STATUS, product, **{"from": previous, "to": status.value}, **details)
    await db.commit()
    invalidate_catalog()
    logger.info(f"Product {product.id} status {previous} -> {status.value}")
    return product


async def submit_product(db: AsyncSession, session: SessionData, product_id: str) -> Product:
    """Send a draft for approval."""
    product = await _staff_product(db, session, product_id, "product:update")
    if product.status != ProductStatus.DRAFT.value:
        raise ValidationFailedError(f"Only draft products can be submitted (product is {product.status})")
    return await _set_status(db, session, product, ProductStatus.PENDING)


async def approve_product(db: AsyncSession, session: SessionData, product_id: str) -> Product:
    product = await _staff_product(db, session, product_id, "product:approve")
    if product.status != ProductStatus.PENDING.value:
        raise ValidationFailedError(f"Only pending products can be approved (product is {product.status})")
    return await _set_status(db, session, product, ProductStatus.ACTIVE)


async def reject_product(db: AsyncSession, session: SessionData, product_id: str, reason: Optional[str] = None) -> Product:
    """Send a pending product back to draft."""
    product = await _staff_product(db, session, product_id, "product:approve")
    if product.status != ProductStatus.PENDING.value:
        raise ValidationFailedError(f"Only pending products can be rejected (product is {product.status})")
    return await _set_status(db, session, product, ProductStatus.DRAFT, reason=reason)


async def publish_product(db: AsyncSession, session: SessionData, product_id: str) -> Product:
    """
    Make a product visible to customers.

    Approvers publish straight to active; editors without
    ``product:approve`` submit the draft for approval instead.
    """
    product = await _staff_product(db, session, product_id, "product:update")
    if product.status not in (ProductStatus.DRAFT.value, ProductStatus.PENDING.value):
        raise ValidationFailedError(f"Cannot publish a product that is {product.status}")

    if await check_permission(db, session, "product:approve"):
        return await _set_status(db, session, product, ProductStatus.ACTIVE)
    if product.status == ProductStatus.PENDING.value:
        return product
    return await _set_status(db, session, product, ProductStatus.PENDING)


async def unpublish_product(db: AsyncSession, session: SessionData, product_id: str) -> Product:
    """Take an active or archived product back to draft."""
    product = await _staff_product(db, session, product_id, "product:update")
    if product.status not in (ProductStatus.ACTIVE.value, ProductStatus.ARCHIVED.value):
        raise ValidationFailedError(f"Cannot unpublish a product that is {product.status}")
    return await _set_status(db, session, product, ProductStatus.DRAFT)


async def add_image(db: AsyncSession, session: SessionData, product_id: str, url: str) -> Product:
    product = await _staff_product(db, session, product_id, "product:update")
    images = product.image_urls
    if url in images:
        return product
    if len(images) >= MAX_IMAGES:
        raise ValidationFailedError(f"A product can have at most {MAX_IMAGES} images")
    product.image_urls = images + [url]
    product.updated_at = utcnow()
    await db.commit()
    invalidate_catalog()
    return product


async def remove_image(db: AsyncSession, session: SessionData, product_id: str, url: str) -> Product:
    product = await _staff_product(db, session, product_id, "product:update")
    images = product.image_urls
    if url not in images:
        raise NotFoundError("Image not found on this product")
    product.image_urls = [u for u in images if u != url]
    product.updated_at = utcnow()
    await db.commit()
    invalidate_catalog()
    return product
