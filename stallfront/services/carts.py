"""
Customer Carts

A cart is one row per customer holding its lines in ``items_json``. Lines
for the same product, stall and pickup time are merged. Carts expire after
CART_EXPIRY_HOURS and a fresh one is started on the next visit.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.config import get_settings
from stallfront.core.exceptions import NotFoundError, ValidationFailedError
from stallfront.models import Cart, Product, ProductStatus, Stall, as_utc, utcnow

logger = logging.getLogger(__name__)


def _slot(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _same_line(line: dict, product_id: str, scheduled_for: Optional[str]) -> bool:
    return line["product_id"] == product_id and line.get("scheduled_for") == scheduled_for


def _touch(cart: Cart, items: list[dict]) -> None:
    cart.items = items
    cart.updated_at = utcnow()


async def get_or_create_cart(db: AsyncSession, customer_id: str) -> Cart:
    """Latest unexpired cart of the customer, or a new empty one."""
    now = utcnow()
    result = await db.execute(
        select(Cart)
        .where(Cart.customer_id == customer_id, Cart.expires_at > now)
        .order_by(Cart.updated_at.desc())
        .limit(1)
    )
    cart = result.scalar_one_or_none()
    if cart is not None:
        return cart

    cart = Cart(
        customer_id=customer_id,
        items_json="[]",
        expires_at=now + timedelta(hours=get_settings().cart_expiry_hours),
    )
    db.add(cart)
    await db.commit()
    logger.debug(f"Created cart {cart.id} for customer {customer_id}")
    return cart


async def add_item(
    db: AsyncSession,
    customer_id: str,
    product_id: str,
    quantity: int,
    scheduled_for: Optional[datetime] = None,
    special_instructions: Optional[str] = None,
) -> Cart:
    if quantity < 1:
        raise ValidationFailedError("Quantity must be at least 1")

    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.status != ProductStatus.ACTIVE.value:
        raise ValidationFailedError(f'Product "{product.title}" is not available')

    cart = await get_or_create_cart(db, customer_id)
    items = cart.items
    slot = _slot(scheduled_for)

    for line in items:
        if _same_line(line, product_id, slot) and line["stall_id"] == product.stall_id:
            line["quantity"] += quantity
            line["unit_price_cents"] = product.price_cents
            if special_instructions:
                line["special_instructions"] = special_instructions
            break
    else:
        items.append({
            "product_id": product.id,
            "stall_id": product.stall_id,
            "quantity": quantity,
            "unit_price_cents": product.price_cents,
            "scheduled_for": slot,
            "special_instructions": special_instructions,
        })

    _touch(cart, items)
    await db.commit()
    return cart


async def update_item_quantity(
    db: AsyncSession,
    customer_id: str,
    product_id: str,
    quantity: int,
    scheduled_for: Optional[datetime] = None,
) -> Cart:
    """Set a line's quantity; zero or less removes the line."""
    cart = await get_or_create_cart(db, customer_id)
    items = cart.items
    slot = _slot(scheduled_for)

    index = next((i for i, line in enumerate(items) if _same_line(line, product_id, slot)), None)
    if index is None:
        raise NotFoundError("Item not in cart")

    if quantity <= 0:
        items.pop(index)
    else:
        items[index]["quantity"] = quantity

    _touch(cart, items)
    await db.commit()
    return cart


async def remove_item(
    db: AsyncSession,
    customer_id: str,
    product_id: str,
    scheduled_for: Optional[datetime] = None,
) -> Cart:
    cart = await get_or_create_cart(db, customer_id)
    slot = _slot(scheduled_for)
    items = [line for line in cart.items if not _same_line(line, product_id, slot)]
    _touch(cart, items)
    await db.commit()
    return cart


async def clear_cart(db: AsyncSession, customer_id: str, commit: bool = True) -> None:
    result = await db.execute(select(Cart).where(Cart.customer_id == customer_id))
    for cart in result.scalars():
        _touch(cart, [])
    if commit:
        await db.commit()


async def cart_summary(db: AsyncSession, cart: Cart) -> dict:
    """Cart lines enriched with product titles and stall names."""
    lines = []
    subtotal = 0
    item_count = 0
    stall_names: dict[str, str] = {}

    for line in cart.items:
        product = await db.get(Product, line["product_id"])
        stall_id = line["stall_id"]
        if stall_id not in stall_names:
            stall = await db.get(Stall, stall_id)
            stall_names[stall_id] = stall.name if stall else ""

        line_total = line["quantity"] * line["unit_price_cents"]
        subtotal += line_total
        item_count += line["quantity"]
        lines.append({
            **line,
            "product_title": product.title if product else "",
            "available": bool(product and product.status == ProductStatus.ACTIVE.value),
            "stall_name": stall_names[stall_id],
            "line_total_cents": line_total,
        })

    return {
        "id": cart.id,
        "items": lines,
        "item_count": item_count,
        "subtotal_cents": subtotal,
        "expires_at": cart.expires_at,
        "updated_at": cart.updated_at,
    }
