"""
Order Endpoints (business staff)

Staff-entered orders and the order lifecycle. Customers use
``/api/customer/orders``.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import CancelRequest, OrderStatusUpdate, StaffOrderCreate
from stallfront.services import orders
from stallfront.services.lifecycle import allowed_next

router = APIRouter(prefix="/api/orders", tags=["Orders"])


def _status_body(order) -> dict[str, Any]:
    return {
        "success": True,
        "order_id": order.id,
        "reference": order.reference,
        "status": order.status,
        "payment_status": order.payment_status,
        "allowed_next": allowed_next(order.status),
    }


@router.get("", summary="List orders")
async def list_orders(
    stall_id: Optional[str] = Query(None),
    business_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None),
    scheduled_from: Optional[datetime] = Query(None),
    scheduled_to: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await orders.list_orders(
        db, session,
        stall_id=stall_id,
        business_id=business_id,
        status=status_filter,
        customer_id=customer_id,
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
        limit=limit,
    )
    return {"success": True, "orders": await orders.orders_out(db, rows), "count": len(rows)}


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create an order")
async def create_order(
    body: StaffOrderCreate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    placed = await orders.create_staff_order(db, session, body)
    return {
        "success": True,
        "order_id": placed.order.id,
        "message": "Order created successfully",
        "order": orders.order_out(placed.order, placed.items),
        "warnings": placed.warnings,
    }


@router.get("/{order_id}", summary="Order detail")
async def get_order(
    order_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "order": await orders.get_order_detail(db, session, order_id)}


@router.patch("/{order_id}", summary="Change order status")
async def update_status(
    order_id: str,
    body: OrderStatusUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    order = await orders.update_order_status(
        db, session, order_id, body.status,
        notes=body.notes,
        estimated_ready_time=body.estimated_ready_time,
        cancelled_reason=body.cancelled_reason,
    )
    return _status_body(order)


@router.post("/{order_id}/confirm", summary="Confirm an order")
async def confirm_order(
    order_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _status_body(await orders.confirm_order(db, session, order_id))


@router.post("/{order_id}/fulfil", summary="Mark an order fulfilled")
async def fulfil_order(
    order_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _status_body(await orders.fulfil_order(db, session, order_id))


@router.post("/{order_id}/cancel", summary="Cancel an order")
async def cancel_order(
    order_id: str,
    body: Optional[CancelRequest] = None,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _status_body(await orders.cancel_order(db, session, order_id, body.reason if body else None))
