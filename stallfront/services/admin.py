"""
Admin Console

Platform overview, approvals, system health, performance and data
integrity checks for super admins.
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any

import redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.cache import admin_cache, cache_stats
from stallfront.core.config import get_settings
from stallfront.core.monitoring import performance_monitor
from stallfront.core.rate_limiter import rate_limiter
from stallfront.core.security import SessionData
from stallfront.models import (
    Business,
    BusinessStatus,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductStatus,
    Stall,
    User,
    utcnow,
)
from stallfront.schemas import ApprovalAction, BusinessOut, ProductOut
from stallfront.services import businesses, products
from stallfront.services.notifications import get_notification_service
from stallfront.services.payment import get_payment_service

logger = logging.getLogger(__name__)

OVERVIEW_TTL = 60


# =============================================================================
# OVERVIEW
# =============================================================================

async def _count(db: AsyncSession, model, *conditions) -> int:
    query = select(func.count()).select_from(model)
    if conditions:
        query = query.where(*conditions)
    return (await db.execute(query)).scalar_one()


def _growth(current: int, previous: int) -> float:
    if previous == 0:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 1)


async def platform_overview(db: AsyncSession) -> dict[str, Any]:
    """Headline platform numbers, cached for a minute."""

    async def load() -> dict[str, Any]:
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)

        users = (await db.execute(select(User))).scalars().all()
        revenue = (await db.execute(
            select(func.coalesce(func.sum(Order.total_cents), 0)).where(
                Order.status != OrderStatus.CANCELLED.value,
                Order.created_at >= month_start,
            )
        )).scalar_one()
        this_week = await _count(db, Order, Order.created_at >= week_ago)
        last_week = await _count(db, Order, Order.created_at >= two_weeks_ago, Order.created_at < week_ago)

        return {
            "total_businesses": await _count(db, Business),
            "active_businesses": await _count(db, Business, Business.status == BusinessStatus.ACTIVE.value),
            "total_users": len(users),
            "total_customers": sum(1 for u in users if u.has_role("customer")),
            "total_orders": await _count(db, Order),
            "pending_approvals": await _count(db, Product, Product.status == ProductStatus.PENDING.value)
            + await _count(db, Business, Business.status == BusinessStatus.PENDING.value),
            "monthly_revenue_cents": int(revenue),
            "orders_this_week": this_week,
            "weekly_growth": _growth(this_week, last_week),
            "generated_at": now.isoformat(),
        }

    return await admin_cache.get_or_set("overview", load, ttl=OVERVIEW_TTL)


# =============================================================================
# APPROVALS
# =============================================================================

async def pending_approvals(db: AsyncSession) -> dict[str, Any]:
    pending_products = (await db.execute(
        select(Product).where(Product.status == ProductStatus.PENDING.value).order_by(Product.updated_at)
    )).scalars().all()
    pending_businesses = (await db.execute(
        select(Business).where(Business.status == BusinessStatus.PENDING.value).order_by(Business.created_at)
    )).scalars().all()
    return {
        "products": [ProductOut.model_validate(p) for p in pending_products],
        "businesses": [BusinessOut.model_validate(b) for b in pending_businesses],
        "total": len(pending_products) + len(pending_businesses),
    }


async def process_approval(db: AsyncSession, session: SessionData, action: ApprovalAction) -> dict[str, Any]:
    if action.entity_type == "product":
        if action.action == "approve":
            product = await products.approve_product(db, session, action.entity_id)
        else:
            product = await products.reject_product(db, session, action.entity_id, action.reason)
        entity = ProductOut.model_validate(product)
    else:
        status = BusinessStatus.ACTIVE if action.action == "approve" else BusinessStatus.DISABLED
        business = await businesses.set_business_status(db, session, action.entity_id, status)
        entity = BusinessOut.model_validate(business)

    admin_cache.delete("overview")
    logger.info(f"{session.email} {action.action}d {action.entity_type} {action.entity_id}")
    return {"entity_type": action.entity_type, "action": action.action, "entity": entity}


# =============================================================================
# HEALTH & PERFORMANCE
# =============================================================================

async def check_database(db: AsyncSession) -> str:
    try:
        await db.execute(select(func.now()))
        return "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return f"unhealthy: {e}"


def _ping_redis() -> None:
    client = redis.Redis.from_url(get_settings().redis_url, socket_timeout=2, socket_connect_timeout=2)
    try:
        client.ping()
    finally:
        client.close()


async def check_redis() -> str:
    try:
        await asyncio.to_thread(_ping_redis)
        return "healthy"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return f"unhealthy: {e}"


async def system_health(db: AsyncSession) -> dict[str, Any]:
    """Status of every dependency; ``operational`` only when all are healthy."""
    payment_ok = await get_payment_service().health_check()
    email_ok = await get_notification_service().health_check()
    checks = {
        "database": await check_database(db),
        "redis": await check_redis(),
        "payment_service": "healthy" if payment_ok else "unhealthy",
        "email_service": "healthy" if email_ok else "unhealthy",
    }
    overall = "operational" if all(v == "healthy" for v in checks.values()) else "degraded"
    return {"status": overall, **checks, "timestamp": utcnow()}


def performance_report(window_minutes: int = 5) -> dict[str, Any]:
    return {
        "requests": performance_monitor.summary(window_minutes),
        "caches": cache_stats(),
        "rate_limiter": rate_limiter.stats(),
    }


# =============================================================================
# DATA VALIDATION
# =============================================================================

async def validate_data(db: AsyncSession) -> dict[str, Any]:
    """
    Scan for records that point at missing parents or disagree with
    themselves. Nothing is modified; issues are reported only.
    """
    business_ids = set((await db.execute(select(Business.id))).scalars())
    stall_ids = set((await db.execute(select(Stall.id))).scalars())

    issues: list[dict[str, Any]] = []

    def report(kind: str, entity_id: str, message: str) -> None:
        issues.append({"type": kind, "entity_id": entity_id, "message": message})

    for stall in (await db.execute(select(Stall))).scalars():
        if stall.business_id not in business_ids:
            report("orphaned_stall", stall.id, f"Stall '{stall.name}' references missing business {stall.business_id}")

    for product in (await db.execute(select(Product))).scalars():
        if product.stall_id not in stall_ids:
            report("orphaned_product", product.id, f"Product '{product.title}' references missing stall {product.stall_id}")

    orders = (await db.execute(select(Order))).scalars().all()
    order_ids = {o.id for o in orders}
    item_totals: dict[str, int] = {}
    for item in (await db.execute(select(OrderItem))).scalars():
        if item.order_id not in order_ids:
            report("orphaned_order_item", item.id, f"Order item references missing order {item.order_id}")
            continue
        item_totals[item.order_id] = item_totals.get(item.order_id, 0) + item.total_price_cents

    for order in orders:
        if order.stall_id not in stall_ids:
            report("orphaned_order", order.id, f"Order #{order.reference} references missing stall {order.stall_id}")
        expected = item_totals.get(order.id, 0) + order.delivery_fee_cents + order.tax_cents
        if expected != order.total_cents:
            report(
                "order_total_mismatch",
                order.id,
                f"Order #{order.reference} total {order.total_cents} != items + fee + tax {expected}",
            )

    for user in (await db.execute(select(User))).scalars():
        try:
            roles = json.loads(user.roles_json or "")
            valid = isinstance(roles, list) and all(isinstance(r, str) for r in roles)
        except ValueError:
            valid = False
        if not valid:
            report("invalid_roles", user.id, f"User {user.email} has malformed roles_json")

    summary: dict[str, int] = {}
    for issue in issues:
        summary[issue["type"]] = summary.get(issue["type"], 0) + 1

    logger.info(f"Data validation found {len(issues)} issues")
    return {
        "valid": not issues,
        "issue_count": len(issues),
        "summary": summary,
        "issues": issues,
        "checked_at": utcnow().isoformat(),
    }
