"""
Analytics

Business and customer analytics computed with pandas over the orders of
a period. Revenue never includes cancelled orders.
"""

import logging
from datetime import timedelta
from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.exceptions import ValidationFailedError
from stallfront.core.permissions import ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.models import Business, Order, OrderItem, OrderStatus, User, as_utc, utcnow
from stallfront.services.export_manager import ExportManager
from stallfront.services.order_validation import to_local

logger = logging.getLogger(__name__)

MAX_PERIOD_DAYS = 365
TOP_N = 10


def _orders_frame(orders: list[Order], tz_name: str) -> pd.DataFrame:
    frame = pd.DataFrame(
        [
            {
                "order_id": o.id,
                "stall_id": o.stall_id,
                "customer_id": o.customer_user_id,
                "status": o.status,
                "total_cents": o.total_cents,
                "created_local": to_local(o.created_at, tz_name),
            }
            for o in orders
        ],
        columns=["order_id", "stall_id", "customer_id", "status", "total_cents", "created_local"],
    )
    if not frame.empty:
        frame["date"] = frame["created_local"].map(lambda d: d.date().isoformat())
        frame["hour"] = frame["created_local"].map(lambda d: d.hour)
    return frame


def _check_period(days: int) -> int:
    if not 1 <= days <= MAX_PERIOD_DAYS:
        raise ValidationFailedError(f"Period must be between 1 and {MAX_PERIOD_DAYS} days")
    return days


async def _business_orders(db: AsyncSession, business_id: str, days: int) -> list[Order]:
    since = utcnow() - timedelta(days=days)
    result = await db.execute(
        select(Order).where(Order.business_id == business_id, Order.created_at >= since).order_by(Order.created_at)
    )
    return list(result.scalars().all())


async def business_analytics(db: AsyncSession, session: SessionData, business_id: str, days: int = 30) -> dict[str, Any]:
    await require_permission(db, session, "orders:view")
    ensure_business_access(session, business_id)
    days = _check_period(days)

    business = await db.get(Business, business_id)
    tz_name = business.timezone if business else "UTC"
    orders = await _business_orders(db, business_id, days)
    frame = _orders_frame(orders, tz_name)

    by_status = {s.value: 0 for s in OrderStatus}
    if not frame.empty:
        by_status.update({k: int(v) for k, v in frame["status"].value_counts().items()})

    live = frame[frame["status"] != OrderStatus.CANCELLED.value] if not frame.empty else frame
    revenue = int(live["total_cents"].sum()) if not live.empty else 0
    order_count = len(live)

    # One row per calendar day, zero-filled
    today = to_local(utcnow(), tz_name).date()
    dates = [(today - timedelta(days=offset)).isoformat() for offset in range(days - 1, -1, -1)]
    daily = pd.DataFrame({"date": dates})
    if not live.empty:
        per_day = live.groupby("date").agg(revenue_cents=("total_cents", "sum"), orders=("order_id", "count"))
        daily = daily.merge(per_day, how="left", left_on="date", right_index=True)
    daily = daily.reindex(columns=["date", "revenue_cents", "orders"]).fillna(0)

    peak_hours: list[dict[str, int]] = []
    if not live.empty:
        hours = live["hour"].value_counts().sort_values(ascending=False).head(3)
        peak_hours = [{"hour": int(h), "orders": int(c)} for h, c in hours.items()]

    return {
        "business_id": business_id,
        "period_days": days,
        "currency": business.currency if business else None,
        "revenue_cents": revenue,
        "order_count": order_count,
        "average_order_value_cents": round(revenue / order_count) if order_count else 0,
        "orders_by_status": by_status,
        "daily": [
            {"date": row.date, "revenue_cents": int(row.revenue_cents), "orders": int(row.orders)}
            for row in daily.itertuples(index=False)
        ],
        "top_products": await _top_products(db, [o.id for o in orders if o.status != OrderStatus.CANCELLED.value]),
        "peak_hours": peak_hours,
    }


async def _top_products(db: AsyncSession, order_ids: list[str]) -> list[dict[str, Any]]:
    if not order_ids:
        return []
    result = await db.execute(select(OrderItem).where(OrderItem.order_id.in_(order_ids)))
    items = pd.DataFrame(
        [
            {"product_id": i.product_id, "title": i.product_title, "qty": i.qty, "revenue_cents": i.total_price_cents}
            for i in result.scalars()
        ],
        columns=["product_id", "title", "qty", "revenue_cents"],
    )
    if items.empty:
        return []
    grouped = (
        items.groupby(["product_id", "title"], as_index=False)[["qty", "revenue_cents"]]
        .sum()
        .sort_values(["qty", "revenue_cents"], ascending=False)
        .head(TOP_N)
    )
    return [
        {"product_id": r.product_id, "title": r.title, "quantity": int(r.qty), "revenue_cents": int(r.revenue_cents)}
        for r in grouped.itertuples(index=False)
    ]


async def export_business_orders(
    db: AsyncSession, session: SessionData, business_id: str, days: int = 30, fmt: str = "xlsx"
) -> dict[str, Any]:
    """Write the period's orders to a file and return the export result."""
    await require_permission(db, session, "orders:export")
    ensure_business_access(session, business_id)
    days = _check_period(days)
    if fmt not in ExportManager.FORMATS:
        raise ValidationFailedError(f"Unsupported export format: {fmt}", details=list(ExportManager.FORMATS))

    rows = await db.run_sync(ExportManager.collect_rows, business_id, days)
    return ExportManager.export_orders(business_id, rows, fmt)


async def customer_analytics(db: AsyncSession, days: int = 30) -> dict[str, Any]:
    """Platform-wide customer numbers for the admin console."""
    days = _check_period(days)
    now = utcnow()
    since = now - timedelta(days=days)

    users = (await db.execute(select(User))).scalars().all()
    customers = [u for u in users if u.has_role("customer")]
    new_customers = [u for u in customers if as_utc(u.created_at) >= since]
    emails = {u.id: u.email for u in customers}
    names = {u.id: u.name for u in customers}

    orders = (await db.execute(
        select(Order).where(Order.status != OrderStatus.CANCELLED.value)
    )).scalars().all()
    frame = pd.DataFrame(
        [{"customer_id": o.customer_user_id, "total_cents": o.total_cents} for o in orders],
        columns=["customer_id", "total_cents"],
    )

    repeat_rate = 0.0
    top_customers: list[dict[str, Any]] = []
    if not frame.empty:
        per_customer = frame.groupby("customer_id").agg(
            orders=("total_cents", "count"), spent_cents=("total_cents", "sum")
        )
        ordering = len(per_customer)
        repeat = int((per_customer["orders"] > 1).sum())
        repeat_rate = round(repeat / ordering * 100, 1) if ordering else 0.0
        for customer_id, row in per_customer.sort_values("spent_cents", ascending=False).head(TOP_N).iterrows():
            top_customers.append({
                "customer_id": customer_id,
                "name": names.get(customer_id, ""),
                "email": emails.get(customer_id, ""),
                "orders": int(row["orders"]),
                "spent_cents": int(row["spent_cents"]),
            })

    return {
        "period_days": days,
        "total_customers": len(customers),
        "new_customers": len(new_customers),
        "customers_with_orders": int(frame["customer_id"].nunique()) if not frame.empty else 0,
        "repeat_customer_rate": repeat_rate,
        "top_customers": top_customers,
    }
