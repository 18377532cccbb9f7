"""Order cancellation shared by buyer/seller cancel, paid-order refunds and dispute refunds."""

from django.utils import timezone

from marketplace.models import Order

from .inventory import restore_stock
from .state_machine import CANCELLABLE_STATUSES, transition_order


def cancel_locked_order(order: Order, changed_by=None, reason: str = "", update_fields=()) -> None:
    """
    Cancel ``order`` and return its items to stock.

    ``order`` must be locked with ``select_for_update`` by the caller; the
    status change, audit row and stock restoration commit together.
    ``update_fields`` names other fields the caller changed on ``order``.
    """
    order.cancellation_reason = reason
    order.cancelled_by = changed_by
    order.cancelled_at = timezone.now()
    transition_order(
        order,
        Order.CANCELLED,
        changed_by=changed_by,
        reason=reason or "Order cancelled",
        update_fields=["cancellation_reason", "cancelled_by", "cancelled_at", *update_fields],
    )
    restore_stock(order.items.all())


def is_cancellable(order: Order) -> bool:
    return order.status in CANCELLABLE_STATUSES
