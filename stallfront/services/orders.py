"""
Order Service

Placing orders (customer checkout and staff entry), listing them, and
driving them through the lifecycle. Every status change goes through
``lifecycle.apply_transition`` and is followed by the same side effects:
refund when due, customer email, ``order.<status>`` webhooks and an
activity log entry.

An order and its line items are written in a single transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.config import get_settings
from stallfront.core.exceptions import (
    NotFoundError,
    PaymentFailedError,
    PermissionDeniedError,
    ValidationFailedError,
)
from stallfront.core.monitoring import order_transitions_total, orders_placed_total, performance_monitor
from stallfront.core.permissions import ORDER_MANAGER_ROLES, ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.models import (
    Business,
    DeliveryOption,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    Stall,
    User,
    as_utc,
    new_id,
    utcnow,
)
from stallfront.schemas import (
    CustomerOrderCreate,
    CustomerOrderUpdate,
    OrderItemInput,
    OrderItemOut,
    OrderOut,
    StaffOrderCreate,
)
from stallfront.services import carts
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.services.lifecycle import TransitionOutcome, apply_transition
from stallfront.services.notifications import OrderMessage, get_notification_service
from stallfront.services.order_validation import (
    ItemCheck,
    validate_complete_order,
    validate_order_items,
    validate_order_scheduling,
)
from stallfront.services.payment import get_payment_service
from stallfront.services.webhooks import trigger_webhooks

logger = logging.getLogger(__name__)

CUSTOMER_SORT_FIELDS = {
    "created_at": Order.created_at,
    "scheduled_for": Order.scheduled_for,
    "total_amount_cents": Order.total_cents,
    "status": Order.status,
}


# =============================================================================
# PRICING
# =============================================================================

@dataclass
class OrderTotals:
    subtotal_cents: int
    delivery_fee_cents: int
    tax_cents: int
    total_cents: int


def calculate_totals(subtotal_cents: int, delivery_option: DeliveryOption | str) -> OrderTotals:
    """Delivery fee for delivery orders, then tax on subtotal plus fee."""
    settings = get_settings()
    option = DeliveryOption(delivery_option)
    fee = settings.delivery_fee_cents if option == DeliveryOption.DELIVERY else 0
    tax = round((subtotal_cents + fee) * settings.tax_rate)
    return OrderTotals(
        subtotal_cents=subtotal_cents,
        delivery_fee_cents=fee,
        tax_cents=tax,
        total_cents=subtotal_cents + fee + tax,
    )


@dataclass
class PlacedOrder:
    order: Order
    items: list[OrderItem]
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# SERIALIZATION
# =============================================================================

async def load_items(db: AsyncSession, order_ids: list[str]) -> dict[str, list[OrderItem]]:
    grouped: dict[str, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    result = await db.execute(
        select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.created_at)
    )
    for item in result.scalars():
        grouped.setdefault(item.order_id, []).append(item)
    return grouped


def order_out(order: Order, items: list[OrderItem], stall: Optional[Stall] = None) -> OrderOut:
    out = OrderOut.model_validate(order)
    out.items = [OrderItemOut.model_validate(item) for item in items]
    if stall is not None:
        out.stall_name = stall.name
        out.stall_cuisine = stall.cuisine_type
    return out


async def orders_out(db: AsyncSession, orders: list[Order], with_stall: bool = False) -> list[OrderOut]:
    items = await load_items(db, [o.id for o in orders])
    stalls: dict[str, Optional[Stall]] = {}
    if with_stall:
        for stall_id in {o.stall_id for o in orders}:
            stalls[stall_id] = await db.get(Stall, stall_id)
    return [order_out(o, items.get(o.id, []), stalls.get(o.stall_id)) for o in orders]


def _webhook_data(order: Order, **extra: Any) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "reference": order.reference,
        "stall_id": order.stall_id,
        "customer_id": order.customer_user_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "total_cents": order.total_cents,
        "currency": order.currency,
        "scheduled_for": as_utc(order.scheduled_for).isoformat(),
        **extra,
    }


async def _order_message(db: AsyncSession, order: Order, items: Optional[list[OrderItem]] = None) -> Optional[OrderMessage]:
    customer = await db.get(User, order.customer_user_id)
    if customer is None:
        return None
    stall = await db.get(Stall, order.stall_id)
    return OrderMessage(
        reference=order.reference,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        stall_name=stall.name if stall else "",
        status=order.status,
        total_cents=order.total_cents,
        currency=order.currency,
        scheduled_for=as_utc(order.scheduled_for).strftime("%Y-%m-%d %H:%M UTC"),
        delivery_option=order.delivery_option,
        delivery_address=order.delivery_address,
        items=[
            {"title": i.product_title, "qty": i.qty, "total_cents": i.total_price_cents}
            for i in items or []
        ],
    )


# =============================================================================
# PLACING ORDERS
# =============================================================================

async def _item_checks(db: AsyncSession, items: list[OrderItemInput]) -> list[ItemCheck]:
    checks = []
    for item in items:
        stall_id = item.stall_id
        if not stall_id:
            product = await db.get(Product, item.product_id)
            stall_id = product.stall_id if product else ""
        checks.append(ItemCheck(item.product_id, stall_id, item.quantity, item.unit_price_cents))
    return checks


def _line_specs(items: list[OrderItemInput]) -> list[tuple[str, int, Optional[str]]]:
    return [(item.product_id, item.quantity, item.notes) for item in items]


async def _build_lines(
    db: AsyncSession, order_id: str, items: list[tuple[str, int, Optional[str]]]
) -> list[OrderItem]:
    """Lines from ``(product_id, quantity, notes)`` at the current catalog price."""
    lines = []
    for product_id, quantity, notes in items:
        product = await db.get(Product, product_id)
        lines.append(OrderItem(
            id=new_id(),
            order_id=order_id,
            product_id=product.id,
            product_title=product.title,
            qty=quantity,
            unit_price_cents=product.price_cents,
            total_price_cents=product.price_cents * quantity,
            notes=notes,
        ))
        if product.inventory_qty is not None:
            product.inventory_qty = max(0, product.inventory_qty - quantity)
    return lines


async def place_customer_order(
    db: AsyncSession,
    session: SessionData,
    request: CustomerOrderCreate,
    ip_address: Optional[str] = None,
) -> PlacedOrder:
    """
    Checkout for a signed-in customer.

    All items must come from one stall. Card orders are charged before
    anything is written; a declined card raises ``PaymentFailedError`` and
    leaves no order behind.
    """
    if not request.items:
        raise ValidationFailedError("Order must contain at least one item")
    if request.scheduled_for is None:
        raise ValidationFailedError("Scheduled time is required")
    scheduled_for = as_utc(request.scheduled_for)
    if scheduled_for <= utcnow():
        raise ValidationFailedError("Order must be scheduled for a future time")
    if request.delivery_option == DeliveryOption.DELIVERY and not (request.delivery_address or "").strip():
        raise ValidationFailedError("Delivery address is required for delivery orders")

    checks = await _item_checks(db, request.items)
    stall_id = next((check.stall_id for check in checks if check.stall_id), "")
    if any(check.stall_id and check.stall_id != stall_id for check in checks):
        raise ValidationFailedError("All items in an order must come from the same stall")

    with performance_monitor.timer("order.validate"):
        validation = await validate_complete_order(db, checks, stall_id, scheduled_for)
    if not validation.valid:
        raise ValidationFailedError("Order validation failed", details=validation.errors)

    stall = await db.get(Stall, stall_id)
    business = await db.get(Business, stall.business_id)
    currency = business.currency if business else get_settings().default_currency

    order_id = new_id()
    lines = await _build_lines(db, order_id, _line_specs(request.items))
    totals = calculate_totals(sum(line.total_price_cents for line in lines), request.delivery_option)

    order = Order(
        id=order_id,
        business_id=stall.business_id,
        stall_id=stall.id,
        customer_user_id=session.user_id,
        status=OrderStatus.PENDING.value,
        scheduled_for=scheduled_for,
        delivery_option=request.delivery_option.value,
        delivery_address=request.delivery_address,
        delivery_instructions=request.delivery_instructions,
        payment_method=request.payment_method.value,
        payment_status=PaymentStatus.PENDING.value,
        subtotal_cents=totals.subtotal_cents,
        delivery_fee_cents=totals.delivery_fee_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        currency=currency,
        notes=request.notes,
    )

    if request.payment_method == PaymentMethod.CARD:
        payment = await get_payment_service().process_payment(
            amount_cents=totals.total_cents,
            currency=currency,
            customer_email=session.email,
            description=f"{stall.name} order #{order.reference}",
            metadata={"order_id": order_id, "stall_id": stall.id},
        )
        if not payment.success:
            await db.rollback()
            logger.info(f"Card payment declined for customer {session.user_id}: {payment.error_code}")
            raise PaymentFailedError(payment.error_message or "Payment was declined")
        order.payment_status = PaymentStatus.PAID.value
        order.payment_intent_id = payment.payment_intent_id

    db.add(order)
    db.add_all(lines)
    await carts.clear_cart(db, session.user_id, commit=False)
    log_activity(
        db,
        ActivityAction.ORDER_CREATED,
        user_id=session.user_id,
        entity_type="order",
        entity_id=order.id,
        details={"stall_id": stall.id, "total_cents": order.total_cents, "payment_method": order.payment_method},
        ip_address=ip_address,
    )

    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        if order.payment_intent_id:
            await get_payment_service().refund_payment(order.payment_intent_id, reason="requested_by_customer")
        raise

    orders_placed_total.labels(channel="customer", payment_method=order.payment_method).inc()
    logger.info(f"Order #{order.reference} placed at stall {stall.id}: {order.total_cents} {currency}")

    message = await _order_message(db, order, lines)
    if message:
        await get_notification_service().notify_order_confirmation(message)
    await trigger_webhooks(db, order.business_id, "order.created", _webhook_data(order, item_count=len(lines)))

    return PlacedOrder(order=order, items=lines, warnings=validation.warnings)


async def create_staff_order(db: AsyncSession, session: SessionData, request: StaffOrderCreate) -> PlacedOrder:
    """Order entered on behalf of a customer (or by the caller for themselves)."""
    await require_permission(db, session, "orders:create")
    # Staff of the business or a super admin; customers check out through /api/customer/orders
    ensure_business_access(session, request.business_id)

    stall = await db.get(Stall, request.stall_id)
    if stall is None or stall.business_id != request.business_id:
        raise ValidationFailedError("Stall does not belong to this business")
    business = await db.get(Business, request.business_id)
    if business is None:
        raise NotFoundError("Business not found")

    customer_id = session.user_id
    if request.customer_user_id:
        if await db.get(User, request.customer_user_id) is None:
            raise ValidationFailedError("Customer not found")
        customer_id = request.customer_user_id

    validation = await validate_order_items(db, [ItemCheck(i.product_id, stall.id, i.qty) for i in request.items])
    if not validation.valid:
        raise ValidationFailedError("Order validation failed", details=validation.errors)

    order_id = new_id()
    lines = await _build_lines(db, order_id, [(i.product_id, i.qty, i.notes) for i in request.items])
    total = sum(line.total_price_cents for line in lines)
    order = Order(
        id=order_id,
        business_id=business.id,
        stall_id=stall.id,
        customer_user_id=customer_id,
        status=OrderStatus.PENDING.value,
        scheduled_for=as_utc(request.scheduled_for),
        subtotal_cents=total,
        total_cents=total,
        currency=business.currency,
        notes=request.notes,
    )
    db.add(order)
    db.add_all(lines)
    log_activity(db, ActivityAction.ORDER_CREATED, user_id=session.user_id, entity_type="order",
                 entity_id=order.id, details={"channel": "staff", "total_cents": total})
    await db.commit()

    orders_placed_total.labels(channel="staff", payment_method=order.payment_method).inc()
    await trigger_webhooks(db, order.business_id, "order.created", _webhook_data(order, item_count=len(lines)))
    return PlacedOrder(order=order, items=lines, warnings=validation.warnings)


# =============================================================================
# READING ORDERS
# =============================================================================

async def list_orders(
    db: AsyncSession,
    session: SessionData,
    stall_id: Optional[str] = None,
    business_id: Optional[str] = None,
    status: Optional[str] = None,
    customer_id: Optional[str] = None,
    scheduled_from: Optional[datetime] = None,
    scheduled_to: Optional[datetime] = None,
    limit: int = 200,
) -> list[Order]:
    """Orders visible to the caller, newest scheduled first."""
    query = select(Order)

    if session.is_super_admin:
        if business_id:
            query = query.where(Order.business_id == business_id)
    elif session.business_id:
        await require_permission(db, session, "orders:view")
        query = query.where(Order.business_id == session.business_id)
    else:
        query = query.where(Order.customer_user_id == session.user_id)

    if stall_id:
        query = query.where(Order.stall_id == stall_id)
    if status:
        query = query.where(Order.status == status)
    if customer_id:
        query = query.where(Order.customer_user_id == customer_id)
    if scheduled_from:
        query = query.where(Order.scheduled_for >= as_utc(scheduled_from))
    if scheduled_to:
        query = query.where(Order.scheduled_for <= as_utc(scheduled_to))

    result = await db.execute(query.order_by(Order.scheduled_for.desc()).limit(limit))
    return list(result.scalars().all())


async def list_customer_orders(
    db: AsyncSession,
    customer_id: str,
    status: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    if sort_by not in CUSTOMER_SORT_FIELDS:
        raise ValidationFailedError(f"Cannot sort by '{sort_by}'", details=sorted(CUSTOMER_SORT_FIELDS))
    column = CUSTOMER_SORT_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()

    base = select(Order).where(Order.customer_user_id == customer_id)
    if status:
        base = base.where(Order.status == status)

    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    result = await db.execute(base.order_by(ordering, Order.id).offset(offset).limit(limit))
    orders = list(result.scalars().all())

    counts = await db.execute(
        select(Order.status, func.count()).where(Order.customer_user_id == customer_id).group_by(Order.status)
    )
    stats = {s.value: 0 for s in OrderStatus}
    stats.update({row[0]: row[1] for row in counts})
    stats["total"] = sum(v for k, v in stats.items() if k != "total")

    return {
        "orders": await orders_out(db, orders, with_stall=True),
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(orders) < total,
        },
        "stats": stats,
    }


async def _get_order(db: AsyncSession, order_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _can_view(session: SessionData, order: Order) -> bool:
    return (
        session.is_super_admin
        or order.customer_user_id == session.user_id
        or (session.business_id is not None and session.business_id == order.business_id)
    )


async def get_order_detail(db: AsyncSession, session: SessionData, order_id: str) -> OrderOut:
    order = await _get_order(db, order_id)
    if not _can_view(session, order):
        if session.business_id is None:
            raise NotFoundError("Order not found")
        raise PermissionDeniedError("You do not have access to this order")
    items = await load_items(db, [order.id])
    return order_out(order, items[order.id], await db.get(Stall, order.stall_id))


async def _get_customer_order(db: AsyncSession, session: SessionData, order_id: str) -> Order:
    order = await _get_order(db, order_id)
    if order.customer_user_id != session.user_id:
        # Customers never learn about other customers' orders
        raise NotFoundError("Order not found")
    return order


# =============================================================================
# LIFECYCLE
# =============================================================================

async def _after_transition(
    db: AsyncSession,
    order: Order,
    outcome: TransitionOutcome,
    actor_id: str,
    notes: Optional[str] = None,
) -> None:
    """Commit a transition and run its side effects."""
    refunded = False
    if outcome.refund_due:
        refund = await get_payment_service().refund_payment(order.payment_intent_id, reason="requested_by_customer")
        if refund.success:
            order.payment_status = PaymentStatus.REFUNDED.value
            refunded = True
        else:
            logger.error(f"Refund for order #{order.reference} failed: {refund.error_message}")
            log_activity(
                db,
                ActivityAction.ORDER_REFUND_FAILED,
                user_id=actor_id,
                entity_type="order",
                entity_id=order.id,
                details={"payment_intent_id": order.payment_intent_id, "error": refund.error_message},
                success=False,
            )

    log_activity(
        db,
        ActivityAction.ORDER_STATUS,
        user_id=actor_id,
        entity_type="order",
        entity_id=order.id,
        details={"from": outcome.previous, "to": outcome.current, "notes": notes},
    )
    order.notification_sent = True
    await db.commit()

    order_transitions_total.labels(to_status=outcome.current).inc()
    logger.info(f"Order #{order.reference}: {outcome.previous} -> {outcome.current}")

    message = await _order_message(db, order)
    if message:
        notifier = get_notification_service()
        if outcome.current == OrderStatus.CANCELLED.value:
            await notifier.notify_order_cancelled(message, order.cancelled_reason, refunded=refunded)
        else:
            await notifier.notify_order_status(message, notes)

    await trigger_webhooks(
        db, order.business_id, f"order.{outcome.current}",
        _webhook_data(order, previous_status=outcome.previous),
    )


async def update_order_status(
    db: AsyncSession,
    session: SessionData,
    order_id: str,
    status: OrderStatus | str,
    notes: Optional[str] = None,
    estimated_ready_time: Optional[datetime] = None,
    cancelled_reason: Optional[str] = None,
) -> Order:
    """Staff-side status change, scoped to the caller's business."""
    if not session.has_role(*ORDER_MANAGER_ROLES):
        raise PermissionDeniedError("Only business staff can update order status")
    order = await _get_order(db, order_id)
    ensure_business_access(session, order.business_id)

    outcome = apply_transition(
        order,
        status,
        notes=notes,
        estimated_ready_time=as_utc(estimated_ready_time),
        cancelled_reason=cancelled_reason,
    )
    await _after_transition(db, order, outcome, session.user_id, notes)
    return order


async def confirm_order(db: AsyncSession, session: SessionData, order_id: str) -> Order:
    await require_permission(db, session, "orders:fulfil")
    order = await _get_order(db, order_id)
    ensure_business_access(session, order.business_id)
    outcome = apply_transition(order, OrderStatus.CONFIRMED)
    await _after_transition(db, order, outcome, session.user_id)
    return order


async def fulfil_order(db: AsyncSession, session: SessionData, order_id: str) -> Order:
    await require_permission(db, session, "orders:fulfil")
    order = await _get_order(db, order_id)
    ensure_business_access(session, order.business_id)
    outcome = apply_transition(order, OrderStatus.FULFILLED)
    await _after_transition(db, order, outcome, session.user_id)
    return order


async def cancel_order(db: AsyncSession, session: SessionData, order_id: str, reason: Optional[str] = None) -> Order:
    await require_permission(db, session, "orders:fulfil")
    order = await _get_order(db, order_id)
    ensure_business_access(session, order.business_id)
    outcome = apply_transition(order, OrderStatus.CANCELLED, cancelled_reason=reason)
    await _after_transition(db, order, outcome, session.user_id, reason)
    return order


# =============================================================================
# CUSTOMER SELF-SERVICE
# =============================================================================

async def cancel_customer_order(
    db: AsyncSession, session: SessionData, order_id: str, reason: Optional[str] = None
) -> Order:
    order = await _get_customer_order(db, session, order_id)
    if order.status != OrderStatus.PENDING.value:
        raise ValidationFailedError(f"Only pending orders can be cancelled (order is {order.status})")
    outcome = apply_transition(order, OrderStatus.CANCELLED, cancelled_reason=reason or "Cancelled by customer")
    await _after_transition(db, order, outcome, session.user_id, reason)
    return order


async def reschedule_customer_order(
    db: AsyncSession, session: SessionData, order_id: str, scheduled_for: datetime
) -> tuple[Order, list[str]]:
    order = await _get_customer_order(db, session, order_id)
    if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
        raise ValidationFailedError("Only pending or confirmed orders can be rescheduled")

    validation = await validate_order_scheduling(db, order.stall_id, scheduled_for, exclude_order_id=order.id)
    if not validation.valid:
        raise ValidationFailedError("Cannot reschedule order", details=validation.errors)

    previous = as_utc(order.scheduled_for)
    order.scheduled_for = as_utc(scheduled_for)
    order.updated_at = utcnow()
    log_activity(db, ActivityAction.ORDER_RESCHEDULED, user_id=session.user_id, entity_type="order",
                 entity_id=order.id, details={"from": previous.isoformat(), "to": order.scheduled_for.isoformat()})
    await db.commit()
    await trigger_webhooks(db, order.business_id, "order.updated",
                           _webhook_data(order, previous_scheduled_for=previous.isoformat()))
    return order, validation.warnings


async def rate_order(
    db: AsyncSession, session: SessionData, order_id: str, rating: int, review: Optional[str] = None
) -> Order:
    order = await _get_customer_order(db, session, order_id)
    if order.status != OrderStatus.FULFILLED.value:
        raise ValidationFailedError("Only fulfilled orders can be rated")
    if not 1 <= rating <= 5:
        raise ValidationFailedError("Rating must be between 1 and 5")
    order.customer_rating = rating
    order.customer_review = review
    log_activity(db, ActivityAction.ORDER_RATED, user_id=session.user_id, entity_type="order",
                 entity_id=order.id, details={"rating": rating})
    await db.commit()
    return order


async def update_customer_order(
    db: AsyncSession, session: SessionData, order_id: str, request: CustomerOrderUpdate
) -> tuple[Order, list[OrderItem], list[str]]:
    """Edit a pending order; totals are recomputed from the catalog."""
    order = await _get_customer_order(db, session, order_id)
    if order.status != OrderStatus.PENDING.value:
        raise ValidationFailedError("Only pending orders can be modified")
    if order.payment_status == PaymentStatus.PAID.value and request.items is not None:
        raise ValidationFailedError("Items of a paid order cannot be changed; cancel and reorder instead")

    warnings: list[str] = []
    delivery_option = request.delivery_option or DeliveryOption(order.delivery_option)
    address = request.delivery_address if request.delivery_address is not None else order.delivery_address
    if delivery_option == DeliveryOption.DELIVERY and not (address or "").strip():
        raise ValidationFailedError("Delivery address is required for delivery orders")

    existing = (await load_items(db, [order.id]))[order.id]
    lines = existing
    if request.items is not None:
        if not request.items:
            raise ValidationFailedError("Order must contain at least one item")
        checks = await _item_checks(db, request.items)
        if any(check.stall_id and check.stall_id != order.stall_id for check in checks):
            raise ValidationFailedError("All items in an order must come from the same stall")

        # Put the old quantities back before checking stock for the new ones
        for item in existing:
            product = await db.get(Product, item.product_id)
            if product is not None and product.inventory_qty is not None:
                product.inventory_qty += item.qty
        validation = await validate_order_items(db, checks)
        if not validation.valid:
            await db.rollback()
            raise ValidationFailedError("Order validation failed", details=validation.errors)
        warnings = validation.warnings

        for item in existing:
            await db.delete(item)
        lines = await _build_lines(db, order.id, _line_specs(request.items))
        db.add_all(lines)

    if request.notes is not None:
        order.notes = request.notes
    if request.delivery_instructions is not None:
        order.delivery_instructions = request.delivery_instructions
    order.delivery_option = delivery_option.value
    order.delivery_address = address

    totals = calculate_totals(sum(line.total_price_cents for line in lines), delivery_option)
    order.subtotal_cents = totals.subtotal_cents
    order.delivery_fee_cents = totals.delivery_fee_cents
    order.tax_cents = totals.tax_cents
    order.total_cents = totals.total_cents
    order.updated_at = utcnow()

    log_activity(db, ActivityAction.ORDER_UPDATED, user_id=session.user_id, entity_type="order",
                 entity_id=order.id, details={"total_cents": order.total_cents})
    await db.commit()
    await trigger_webhooks(db, order.business_id, "order.updated", _webhook_data(order))
    return order, lines, warnings


async def customer_dashboard(db: AsyncSession, session: SessionData) -> dict[str, Any]:
    """Totals, recent orders and favourite stalls for the customer home page."""
    result = await db.execute(
        select(Order).where(Order.customer_user_id == session.user_id).order_by(Order.created_at.desc())
    )
    orders = list(result.scalars().all())
    live = [o for o in orders if o.status != OrderStatus.CANCELLED.value]

    stall_counts: dict[str, int] = {}
    for order in live:
        stall_counts[order.stall_id] = stall_counts.get(order.stall_id, 0) + 1
    favourites = []
    for stall_id, count in sorted(stall_counts.items(), key=lambda kv: kv[1], reverse=True)[:3]:
        stall = await db.get(Stall, stall_id)
        if stall is not None:
            favourites.append({"stall_id": stall.id, "name": stall.name, "order_count": count})

    upcoming = [o for o in live if o.status not in (OrderStatus.FULFILLED.value,) and as_utc(o.scheduled_for) > utcnow()]

    return {
        "total_orders": len(orders),
        "total_spent_cents": sum(o.total_cents for o in live),
        "active_orders": len([o for o in live if o.status != OrderStatus.FULFILLED.value]),
        "recent_orders": await orders_out(db, orders[:5], with_stall=True),
        "upcoming_orders": await orders_out(db, sorted(upcoming, key=lambda o: as_utc(o.scheduled_for))[:5], with_stall=True),
        "favourite_stalls": favourites,
    }
