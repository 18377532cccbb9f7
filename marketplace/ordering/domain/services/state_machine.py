"""
Order and payment-status state machines.

The transition tables below are authoritative. ``transition_order`` is the
only code path that changes ``Order.status``; it appends the matching
StatusChange row and must run inside the caller's transaction, on a row
already locked with ``select_for_update``.
"""

import logging
from typing import Dict, FrozenSet, Iterable, Optional

from marketplace.ordering.domain.models import Order, StatusChange
from utils.exceptions import InvalidTransition

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    Order.PENDING: frozenset({Order.CONFIRMED, Order.CANCELLED}),
    Order.CONFIRMED: frozenset({Order.PROCESSING, Order.SHIPPED, Order.CANCELLED}),
    Order.PROCESSING: frozenset({Order.SHIPPED, Order.CANCELLED}),
    Order.SHIPPED: frozenset({Order.OUT_FOR_DELIVERY}),
    Order.OUT_FOR_DELIVERY: frozenset({Order.DELIVERED}),
    Order.DELIVERED: frozenset({Order.COMPLETED}),
    Order.COMPLETED: frozenset(),
    Order.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    Order.PAYMENT_PENDING: frozenset({Order.PAYMENT_SUCCESS, Order.PAYMENT_FAILED, Order.PAYMENT_PROCESSING}),
    Order.PAYMENT_PROCESSING: frozenset({Order.PAYMENT_SUCCESS, Order.PAYMENT_FAILED}),
    Order.PAYMENT_SUCCESS: frozenset({Order.PAYMENT_REFUNDED, Order.PAYMENT_PARTIALLY_REFUNDED}),
    Order.PAYMENT_PARTIALLY_REFUNDED: frozenset({Order.PAYMENT_REFUNDED}),
    Order.PAYMENT_FAILED: frozenset(),
    Order.PAYMENT_REFUNDED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({Order.PENDING, Order.CONFIRMED, Order.PROCESSING})

# Statuses that require a settled payment
PAID_FULFILLMENT_STATUSES = frozenset(
    {Order.PROCESSING, Order.SHIPPED, Order.OUT_FOR_DELIVERY, Order.DELIVERED, Order.COMPLETED}
)


def can_transition_order(old_status: str, new_status: str) -> bool:
    return new_status in ORDER_TRANSITIONS.get(old_status, frozenset())


def can_transition_payment(old_status: str, new_status: str, allow_retry: bool = False) -> bool:
    if allow_retry and old_status == Order.PAYMENT_FAILED and new_status == Order.PAYMENT_PENDING:
        return True
    return new_status in PAYMENT_TRANSITIONS.get(old_status, frozenset())


def ensure_order_transition(order: Order, new_status: str) -> None:
    if not can_transition_order(order.status, new_status):
        raise InvalidTransition("order", order.status, new_status)


def transition_order(
    order: Order,
    new_status: str,
    changed_by=None,
    reason: str = "",
    update_fields: Iterable[str] = (),
) -> StatusChange:
    """
    Move ``order`` to ``new_status`` and append the audit row.

    ``update_fields`` lists extra fields the caller changed on ``order`` that
    should be saved together with the status.
    """
    ensure_order_transition(order, new_status)

    old_status = order.status
    order.status = new_status
    order.save(update_fields=["status", "updated_at", *update_fields])

    change = StatusChange.objects.create(
        order=order,
        old_status=old_status,
        new_status=new_status,
        changed_by=changed_by,
        reason=reason,
    )
    logger.info(f"Order {order.id}: {old_status} -> {new_status} ({reason or 'no reason'})")
    return change


def record_initial_status(order: Order, changed_by=None, reason: str = "Order created") -> StatusChange:
    return StatusChange.objects.create(
        order=order,
        old_status=None,
        new_status=order.status,
        changed_by=changed_by,
        reason=reason,
    )


def transition_payment_status(
    order: Order,
    new_status: str,
    allow_retry: bool = False,
    save: bool = True,
    update_fields: Optional[Iterable[str]] = None,
) -> None:
    """
    Move ``order.payment_status`` along the payment sub-machine.

    ``allow_retry`` opens the FAILED -> PENDING edge used by a new checkout.
    """
    old_status = order.payment_status
    if not can_transition_payment(old_status, new_status, allow_retry=allow_retry):
        raise InvalidTransition("payment", old_status, new_status)

    order.payment_status = new_status
    if save:
        order.save(update_fields=["payment_status", "updated_at", *(update_fields or ())])
    logger.info(f"Order {order.id} payment: {old_status} -> {new_status}")
