"""
Order Lifecycle

The one transition table every status change goes through, and the
field updates that come with each transition. Notifications, webhooks and
refunds are driven from the orders service based on the returned
``TransitionOutcome``.

Happy path: pending → confirmed → preparing → ready → fulfilled. A confirmed
order may skip straight to ready or fulfilled. Anything not yet finished can
be cancelled; fulfilled and cancelled are terminal.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from stallfront.core.exceptions import InvalidTransitionError
from stallfront.models import Order, OrderStatus, PaymentMethod, PaymentStatus, utcnow

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.FULFILLED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)


def _status(value: OrderStatus | str) -> OrderStatus:
    return value if isinstance(value, OrderStatus) else OrderStatus(value)


def can_transition(current: OrderStatus | str, requested: OrderStatus | str) -> bool:
    try:
        return _status(requested) in ORDER_TRANSITIONS[_status(current)]
    except ValueError:
        return False


def assert_transition(current: OrderStatus | str, requested: OrderStatus | str) -> None:
    if not can_transition(current, requested):
        current_value = current.value if isinstance(current, OrderStatus) else current
        requested_value = requested.value if isinstance(requested, OrderStatus) else requested
        raise InvalidTransitionError(current_value, requested_value)


def allowed_next(current: OrderStatus | str) -> list[str]:
    return sorted(s.value for s in ORDER_TRANSITIONS[_status(current)])


@dataclass
class TransitionOutcome:
    previous: str
    current: str
    refund_due: bool = False  # card payment to give back
    became_paid: bool = False


def apply_transition(
    order: Order,
    requested: OrderStatus | str,
    notes: Optional[str] = None,
    estimated_ready_time: Optional[datetime] = None,
    cancelled_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """
    Validate and apply a status change to ``order`` in memory.

    Raises:
        InvalidTransitionError: the table does not allow the move
    """
    target = _status(requested)
    assert_transition(order.status, target)
    now = now or utcnow()
    outcome = TransitionOutcome(previous=order.status, current=target.value)

    order.status = target.value
    order.updated_at = now
    if notes is not None:
        order.status_notes = notes
    if estimated_ready_time is not None:
        order.estimated_ready_time = estimated_ready_time

    if target == OrderStatus.READY:
        order.actual_ready_time = now

    elif target == OrderStatus.CANCELLED:
        order.cancelled_reason = cancelled_reason or notes
        if order.payment_status == PaymentStatus.PAID.value:
            # Card payments stay paid until the provider confirms the refund
            outcome.refund_due = (
                order.payment_method == PaymentMethod.CARD.value and bool(order.payment_intent_id)
            )
            if not outcome.refund_due:
                order.payment_status = PaymentStatus.REFUNDED.value

    elif target == OrderStatus.FULFILLED:
        if order.payment_method == PaymentMethod.CASH.value and order.payment_status == PaymentStatus.PENDING.value:
            order.payment_status = PaymentStatus.PAID.value
            outcome.became_paid = True

    return outcome
