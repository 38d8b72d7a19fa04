"""
Order Validation

Checks an order against the catalog and the stall's calendar before it is
written. Problems that block the order go into ``errors``; things the
customer or stall should know about go into ``warnings``.

Opening hours and capacity days are evaluated in the business's local
timezone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.config import get_settings
from stallfront.models import (
    Business,
    Order,
    OrderStatus,
    Product,
    ProductStatus,
    Stall,
    StallStatus,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
CAPACITY_WARNING_RATIO = 0.8
LARGE_QUANTITY = 10


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> "ValidationResult":
        self.valid = False
        self.errors.append(message)
        return self

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.valid = self.valid and other.valid
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self


@dataclass
class ItemCheck:
    product_id: str
    stall_id: str
    quantity: int
    unit_price_cents: Optional[int] = None  # None = take the catalog price


@lru_cache(maxsize=64)
def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return ZoneInfo("UTC")


def to_local(moment: datetime, tz_name: str) -> datetime:
    return as_utc(moment).astimezone(_zone(tz_name))


def _day_hours(stall: Stall, local: datetime) -> Optional[dict]:
    hours = stall.open_hours.get(DAY_NAMES[local.weekday()])
    return hours if isinstance(hours, dict) else None


async def _stall_timezone(db: AsyncSession, stall: Stall) -> str:
    business = await db.get(Business, stall.business_id)
    if business and business.timezone:
        return business.timezone
    return get_settings().default_timezone


# =============================================================================
# ITEMS
# =============================================================================

async def validate_order_items(db: AsyncSession, items: list[ItemCheck]) -> ValidationResult:
    """Products exist, are on sale at the stated stall, in stock and correctly priced."""
    result = ValidationResult()

    for item in items:
        product = await db.get(Product, item.product_id)
        if product is None:
            result.error(f"Product {item.product_id} not found")
            continue

        if product.status != ProductStatus.ACTIVE.value:
            result.error(f'Product "{product.title}" is not available')
            continue

        if product.stall_id != item.stall_id:
            result.error(f'Product "{product.title}" does not belong to the specified stall')
            continue

        if product.inventory_qty is not None and product.inventory_qty < item.quantity:
            result.error(
                f'Insufficient inventory for "{product.title}". '
                f"Available: {product.inventory_qty}, Requested: {item.quantity}"
            )
            continue

        if item.unit_price_cents is not None and item.unit_price_cents != product.price_cents:
            result.error(
                f'Price mismatch for "{product.title}". '
                f"Current price: {product.price_cents / 100:.2f}, "
                f"Submitted price: {item.unit_price_cents / 100:.2f}"
            )
            continue

        if product.inventory_qty is not None and product.inventory_qty <= item.quantity * 2:
            result.warnings.append(
                f'Low inventory for "{product.title}". Only {product.inventory_qty} remaining.'
            )

        if item.quantity > LARGE_QUANTITY:
            result.warnings.append(
                f'Large quantity ordered for "{product.title}" ({item.quantity} items). '
                f"This may affect preparation time."
            )

    return result


# =============================================================================
# SCHEDULING
# =============================================================================

async def validate_order_scheduling(
    db: AsyncSession,
    stall_id: str,
    scheduled_for: datetime,
    exclude_order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """
    Check the stall can take an order at ``scheduled_for``.

    ``exclude_order_id`` leaves an existing order out of the capacity and
    conflict counts when it is being rescheduled.
    """
    settings = get_settings()
    result = ValidationResult()
    now = now or utcnow()
    scheduled = as_utc(scheduled_for)

    stall = await db.get(Stall, stall_id)
    if stall is None:
        return result.error("Stall not found")
    if stall.status != StallStatus.ACTIVE.value:
        return result.error("Stall is not currently accepting orders")

    if scheduled <= now:
        return result.error("Order must be scheduled for a future time")
    if scheduled > now + timedelta(days=settings.max_schedule_days):
        return result.error(
            f"Orders can only be scheduled up to {settings.max_schedule_days} days in advance"
        )

    tz_name = await _stall_timezone(db, stall)
    local = to_local(scheduled, tz_name)
    day_name = DAY_NAMES[local.weekday()]
    hours = _day_hours(stall, local)

    if hours is not None:
        if hours.get("closed"):
            return result.error(f"Stall is closed on {day_name}s")
        open_at, close_at = hours.get("open"), hours.get("close")
        if open_at and close_at:
            clock = local.strftime("%H:%M")
            if clock < open_at or clock > close_at:
                result.warnings.append(
                    f"Order is scheduled outside normal operating hours ({open_at} - {close_at})"
                )

    # Non-cancelled orders on the same local day or inside the conflict window
    day_start_local = local.replace(hour=0, minute=0, second=0, microsecond=0)
    day_start = day_start_local.astimezone(scheduled.tzinfo)
    day_end = (day_start_local + timedelta(days=1)).astimezone(scheduled.tzinfo)
    window = timedelta(minutes=settings.conflict_window_minutes)

    query = select(Order).where(
        Order.stall_id == stall_id,
        Order.status != OrderStatus.CANCELLED.value,
        Order.scheduled_for >= min(day_start, scheduled - window),
        Order.scheduled_for < max(day_end, scheduled + window),
    )
    if exclude_order_id:
        query = query.where(Order.id != exclude_order_id)
    nearby = list((await db.execute(query)).scalars().all())

    if stall.capacity_per_day > 0:
        same_day = [o for o in nearby if day_start <= as_utc(o.scheduled_for) < day_end]
        total_for_day = len(same_day) + 1
        if total_for_day > stall.capacity_per_day:
            return result.error(
                f"Stall has reached capacity for {local.strftime('%a %b %d %Y')}. "
                f"Maximum {stall.capacity_per_day} orders per day."
            )
        if total_for_day > stall.capacity_per_day * CAPACITY_WARNING_RATIO:
            result.warnings.append(
                f"Stall is approaching capacity for this day "
                f"({total_for_day}/{stall.capacity_per_day} orders)"
            )

    conflicts = [o for o in nearby if abs(as_utc(o.scheduled_for) - scheduled) < window]
    if conflicts:
        result.warnings.append(
            f"There are {len(conflicts)} other orders scheduled within "
            f"{settings.conflict_window_minutes} minutes of this time"
        )

    return result


async def validate_complete_order(
    db: AsyncSession,
    items: list[ItemCheck],
    stall_id: str,
    scheduled_for: datetime,
    now: Optional[datetime] = None,
) -> ValidationResult:
    result = await validate_order_items(db, items)
    return result.merge(await validate_order_scheduling(db, stall_id, scheduled_for, now=now))


def is_stall_open(stall: Stall, tz_name: str, now: Optional[datetime] = None) -> bool:
    """Whether the stall is active and inside today's opening hours."""
    if stall.status != StallStatus.ACTIVE.value:
        return False
    local = to_local(now or utcnow(), tz_name)
    hours = _day_hours(stall, local)
    if hours is None:
        return True
    if hours.get("closed"):
        return False
    open_at, close_at = hours.get("open"), hours.get("close")
    if open_at and close_at:
        return open_at <= local.strftime("%H:%M") <= close_at
    return True


async def is_stall_accepting_orders(db: AsyncSession, stall_id: str, now: Optional[datetime] = None) -> bool:
    stall = await db.get(Stall, stall_id)
    if stall is None:
        return False
    return is_stall_open(stall, await _stall_timezone(db, stall), now)
