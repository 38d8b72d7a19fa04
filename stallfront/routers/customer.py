"""
Customer Endpoints

Stall browsing (public), the cart, checkout and order self-service for
signed-in customers.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import require_customer
from stallfront.core.rate_limiter import RateLimitRules, get_client_ip, rate_limit
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import (
    CancelRequest,
    CartItemAdd,
    CartItemUpdate,
    CustomerOrderCreate,
    CustomerOrderUpdate,
    RateOrderRequest,
    RescheduleRequest,
)
from stallfront.services import carts, orders, stalls

router = APIRouter(prefix="/api/customer", tags=["Customer"])


# =============================================================================
# STALLS
# =============================================================================

@router.get(
    "/stalls",
    summary="Browse stalls",
    dependencies=[Depends(rate_limit(RateLimitRules.BROWSE))],
)
async def browse_stalls(
    search: Optional[str] = Query(None, max_length=100),
    cuisine: Optional[str] = Query(None, max_length=60),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    listing = await stalls.public_stalls(db, search, cuisine)
    return {"success": True, "stalls": listing, "count": len(listing)}


@router.get(
    "/stalls/{stall_id}",
    summary="Stall menu",
    dependencies=[Depends(rate_limit(RateLimitRules.BROWSE))],
)
async def stall_menu(stall_id: str, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return {"success": True, **await stalls.public_stall_detail(db, stall_id)}


# =============================================================================
# CART
# =============================================================================

@router.get("/cart", summary="Current cart")
async def get_cart(
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    cart = await carts.get_or_create_cart(db, session.user_id)
    return {"success": True, "cart": await carts.cart_summary(db, cart)}


@router.post(
    "/cart",
    summary="Add to cart",
    dependencies=[Depends(rate_limit(RateLimitRules.CART))],
)
async def add_to_cart(
    body: CartItemAdd,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    cart = await carts.add_item(
        db, session.user_id, body.product_id, body.quantity, body.scheduled_for, body.special_instructions
    )
    return {"success": True, "cart": await carts.cart_summary(db, cart)}


@router.put(
    "/cart",
    summary="Change a cart line quantity",
    dependencies=[Depends(rate_limit(RateLimitRules.CART))],
)
async def update_cart(
    body: CartItemUpdate,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    cart = await carts.update_item_quantity(db, session.user_id, body.product_id, body.quantity, body.scheduled_for)
    return {"success": True, "cart": await carts.cart_summary(db, cart)}


@router.delete("/cart", summary="Remove a line or clear the cart")
async def delete_from_cart(
    product_id: Optional[str] = Query(None),
    scheduled_for: Optional[datetime] = Query(None),
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    if product_id is None:
        await carts.clear_cart(db, session.user_id)
        cart = await carts.get_or_create_cart(db, session.user_id)
    else:
        cart = await carts.remove_item(db, session.user_id, product_id, scheduled_for)
    return {"success": True, "cart": await carts.cart_summary(db, cart)}


# =============================================================================
# ORDERS
# =============================================================================

@router.post(
    "/orders",
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    dependencies=[Depends(rate_limit(RateLimitRules.ORDER))],
)
async def place_order(
    body: CustomerOrderCreate,
    request: Request,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    placed = await orders.place_customer_order(db, session, body, get_client_ip(request))
    return {
        "success": True,
        "message": f"Order #{placed.order.reference} placed",
        "order": orders.order_out(placed.order, placed.items),
        "warnings": placed.warnings,
    }


@router.get("/orders", summary="My orders")
async def my_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    sort_by: str = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    page = await orders.list_customer_orders(db, session.user_id, status_filter, sort_by, sort_order, limit, offset)
    return {"success": True, **page}


@router.get("/orders/{order_id}", summary="Order detail")
async def my_order(
    order_id: str,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "order": await orders.get_order_detail(db, session, order_id)}


@router.patch("/orders/{order_id}", summary="Modify a pending order")
async def modify_order(
    order_id: str,
    body: CustomerOrderUpdate,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    order, items, warnings = await orders.update_customer_order(db, session, order_id, body)
    return {"success": True, "order": orders.order_out(order, items), "warnings": warnings}


@router.post("/orders/{order_id}/cancel", summary="Cancel a pending order")
async def cancel_order(
    order_id: str,
    body: Optional[CancelRequest] = None,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    order = await orders.cancel_customer_order(db, session, order_id, body.reason if body else None)
    return {
        "success": True,
        "message": f"Order #{order.reference} cancelled",
        "status": order.status,
        "payment_status": order.payment_status,
    }


@router.post("/orders/{order_id}/reschedule", summary="Move an order to another time")
async def reschedule_order(
    order_id: str,
    body: RescheduleRequest,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    order, warnings = await orders.reschedule_customer_order(db, session, order_id, body.scheduled_for)
    return {"success": True, "scheduled_for": order.scheduled_for, "warnings": warnings}


@router.post("/orders/{order_id}/rate", summary="Rate a fulfilled order")
async def rate_order(
    order_id: str,
    body: RateOrderRequest,
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    order = await orders.rate_order(db, session, order_id, body.rating, body.review)
    return {"success": True, "rating": order.customer_rating, "review": order.customer_review}


@router.get("/dashboard", summary="Customer dashboard")
async def dashboard(
    session: SessionData = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, **await orders.customer_dashboard(db, session)}
