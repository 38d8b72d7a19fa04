"""
Order Export Manager

Writes a business's orders to an Excel workbook or CSV file under
EXPORT_DIRECTORY. A file lock per business keeps concurrent exports (API
request and Celery task) from writing the same file at once.

Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout
from sqlalchemy import select
from sqlalchemy.orm import Session

from stallfront.core.config import get_settings
from stallfront.models import Order, OrderItem, Stall, User, utcnow

logger = logging.getLogger(__name__)


class ExportManager:
    """File-locked order exports."""

    ORDER_COLUMNS = [
        "order_id",
        "reference",
        "created_at",
        "scheduled_for",
        "stall",
        "customer_email",
        "status",
        "delivery_option",
        "payment_method",
        "payment_status",
        "items",
        "subtotal",
        "delivery_fee",
        "tax",
        "total",
        "currency",
    ]

    FORMATS = ("xlsx", "csv")

    @staticmethod
    def order_row(order, items: list, stall_name: str, customer_email: str) -> dict[str, Any]:
        """Flatten an order and its items into one export row."""
        return {
            "order_id": order.id,
            "reference": order.reference,
            "created_at": order.created_at.isoformat() if order.created_at else "",
            "scheduled_for": order.scheduled_for.isoformat() if order.scheduled_for else "",
            "stall": stall_name,
            "customer_email": customer_email,
            "status": order.status,
            "delivery_option": order.delivery_option,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "items": "; ".join(f"{item.qty} x {item.product_title}" for item in items),
            "subtotal": order.subtotal_cents / 100,
            "delivery_fee": order.delivery_fee_cents / 100,
            "tax": order.tax_cents / 100,
            "total": order.total_cents / 100,
            "currency": order.currency,
        }

    @classmethod
    def collect_rows(cls, session: Session, business_id: str, days: int) -> list[dict[str, Any]]:
        """
        Export rows for the orders a business received in the last ``days`` days.

        Takes a sync session; async callers go through ``AsyncSession.run_sync``.
        """
        since = utcnow() - timedelta(days=days)
        orders = session.execute(
            select(Order)
            .where(Order.business_id == business_id, Order.created_at >= since)
            .order_by(Order.created_at)
        ).scalars().all()

        items_by_order: dict[str, list[OrderItem]] = {o.id: [] for o in orders}
        if orders:
            for item in session.execute(
                select(OrderItem).where(OrderItem.order_id.in_(list(items_by_order)))
            ).scalars():
                items_by_order[item.order_id].append(item)

        stalls = {s.id: s.name for s in session.execute(
            select(Stall).where(Stall.business_id == business_id)
        ).scalars()}
        customer_ids = {o.customer_user_id for o in orders}
        emails: dict[str, str] = {}
        if customer_ids:
            emails = {u.id: u.email for u in session.execute(
                select(User).where(User.id.in_(customer_ids))
            ).scalars()}

        return [
            cls.order_row(
                order,
                items_by_order[order.id],
                stalls.get(order.stall_id, ""),
                emails.get(order.customer_user_id, ""),
            )
            for order in orders
        ]

    @classmethod
    def _export_dir(cls) -> Path:
        path = Path(get_settings().export_directory)
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created export directory: {path}")
        return path

    @classmethod
    def build_frame(cls, rows: list[dict[str, Any]]) -> pd.DataFrame:
        frame = pd.DataFrame(rows, columns=cls.ORDER_COLUMNS)
        for column in ("subtotal", "delivery_fee", "tax", "total"):
            frame[column] = frame[column].astype(float)
        return frame

    @classmethod
    def export_orders(cls, business_id: str, rows: list[dict[str, Any]], fmt: str = "xlsx") -> dict[str, Any]:
        """
        Write ``rows`` to ``orders_<business>_<timestamp>.<fmt>``.

        Returns a result dict with ``success``, ``path`` and ``message``.
        """
        if fmt not in cls.FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")

        settings = get_settings()
        export_dir = cls._export_dir()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        path = export_dir / f"orders_{business_id}_{stamp}.{fmt}"
        lock_path = export_dir / f"orders_{business_id}.lock"

        result: dict[str, Any] = {
            "success": False,
            "message": "",
            "path": None,
            "rows": len(rows),
        }

        try:
            with FileLock(str(lock_path), timeout=settings.export_lock_timeout):
                frame = cls.build_frame(rows)
                if fmt == "xlsx":
                    frame.to_excel(str(path), index=False, engine="openpyxl", sheet_name="orders")
                else:
                    frame.to_csv(str(path), index=False)
        except Timeout:
            result["message"] = f"Lock timeout ({settings.export_lock_timeout}s)"
            logger.error(f"Export lock timeout for business {business_id}")
            return result

        logger.info(f"Exported {len(rows)} orders for business {business_id} to {path}")
        result.update(success=True, path=str(path), message=f"{len(rows)} orders exported")
        return result
