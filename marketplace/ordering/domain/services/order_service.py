"""
OrderService - Order Lifecycle Management

Handles order creation, fulfillment transitions, cancellation and the
status history. Every status change goes through ``transition_order`` so the
StatusChange audit row commits with the order update.

State Machine:
PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED -> COMPLETED
       \\-> CANCELLED (from PENDING, CONFIRMED or PROCESSING; restores stock)
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.notifications import NotifierInterface
from infrastructure.observability import get_tracer
from marketplace.models import DeliveryInfo, Order, OrderItem, Product, Store
from marketplace.ordering.domain.models import StatusChange
from payment_system.domain.models import Escrow
from utils.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from utils.rbac import is_admin, is_order_buyer, is_order_seller, require_order_party
from utils.service_base import BaseService, ServiceResult, paginate
from utils.side_effects import run_after_commit

from .cancellation import cancel_locked_order, is_cancellable
from .inventory import reserve_stock
from .state_machine import (
    CANCELLABLE_STATUSES,
    PAID_FULFILLMENT_STATUSES,
    can_transition_payment,
    ensure_order_transition,
    record_initial_status,
    transition_order,
    transition_payment_status,
)

User = get_user_model()
tracer = get_tracer(__name__)

BUYER_CANCELLABLE = frozenset({Order.PENDING})
SELLER_CANCELLABLE = frozenset({Order.PENDING, Order.CONFIRMED})
DELIVERY_FIELDS = ("recipient_name", "phone", "address", "city", "region")
MONEY_QUANT = Decimal("0.01")


def _money(value, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else "0")).quantize(MONEY_QUANT)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount for {field_name}", errors=[f"{field_name}: must be a decimal number"])
    if amount < 0:
        raise ValidationError(f"{field_name} cannot be negative", errors=[f"{field_name}: must be >= 0"])
    return amount


class OrderService(BaseService):
    """
    Service for managing order lifecycle.

    Dependencies:
    - RefundService: refunds held escrow when a paid order is cancelled
    - NotifierInterface: buyer/seller notifications (after commit)
    - CacheInterface: invalidated after every mutation
    """

    def __init__(self, refund_service, notifier: NotifierInterface, cache: CacheInterface):
        super().__init__()
        self.refund_service = refund_service
        self.notifier = notifier
        self.cache = cache

    def _get_order(self, order_id) -> Order:
        order = Order.objects.select_related("store", "buyer").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _notify(self, user_id, title: str, body: str, order: Order, notification_type: str = "order_update") -> None:
        run_after_commit(
            self.notifier.notify,
            user_id,
            title,
            body,
            notification_type,
            {"orderId": str(order.pk), "status": order.status},
            description=f"order notification '{title}'",
        )

    @BaseService.log_performance
    @BaseService.returns_result
    def create_order(
        self,
        buyer,
        store_id,
        items: List[Dict[str, Any]],
        delivery_info: Dict[str, Any],
        delivery_fee=0,
        tax_amount=0,
        discount_amount=0,
        currency: Optional[str] = None,
        total_amount=None,
        buyer_notes: str = "",
    ) -> ServiceResult[Order]:
        """
        Create a PENDING order for one store and reserve its stock.

        Workflow:
        1. Validate items, delivery info and amounts
        2. Lock products and reserve stock
        3. Snapshot prices into line items, compute totals
        4. Create order, items, delivery info and the initial StatusChange

        Args:
            buyer: User placing the order
            store_id: Store every product must belong to
            items: [{"product_id": ..., "quantity": n}, ...]
            delivery_info: recipient_name, phone, address, city, region (+ notes)
            total_amount: optional declared total; must match the computed one

        Returns:
            ServiceResult with created Order
        """
        with tracer.start_as_current_span("order.create") as span:
            span.set_attribute("user.id", str(buyer.pk))

            if not items:
                raise ValidationError("Order must contain at least one item", errors=["items: This list may not be empty."])

            quantities: Dict[str, int] = {}
            errors = []
            for index, item in enumerate(items):
                product_id = str(item.get("product_id") or "")
                try:
                    quantity = int(item.get("quantity", 0))
                except (TypeError, ValueError):
                    quantity = 0
                if not product_id:
                    errors.append(f"items[{index}].product_id: This field is required.")
                if quantity <= 0:
                    errors.append(f"items[{index}].quantity: must be a positive integer.")
                if product_id and quantity > 0:
                    quantities[product_id] = quantities.get(product_id, 0) + quantity

            delivery_info = delivery_info or {}
            errors.extend(f"delivery_info.{f}: This field is required." for f in DELIVERY_FIELDS if not delivery_info.get(f))
            if errors:
                raise ValidationError("Invalid order request", errors=errors)

            delivery_fee = _money(delivery_fee, "delivery_fee")
            tax_amount = _money(tax_amount, "tax_amount")
            discount_amount = _money(discount_amount, "discount_amount")

            store = Store.objects.filter(pk=store_id, is_active=True).first()
            if store is None:
                raise NotFoundError(f"Store {store_id} not found")
            if store.owner_id == buyer.pk:
                raise PreconditionFailed("You cannot order from your own store")

            with transaction.atomic():
                products = {
                    str(p.pk): p
                    for p in Product.objects.select_for_update().filter(pk__in=quantities.keys(), store=store, is_active=True)
                }
                missing = [pid for pid in quantities if pid not in products]
                if missing:
                    raise ValidationError(
                        "Some products are unavailable or not sold by this store",
                        errors=[f"product {pid} is not available in this store" for pid in missing],
                    )

                subtotal = sum(
                    (products[pid].price * qty for pid, qty in quantities.items()), Decimal("0.00")
                ).quantize(MONEY_QUANT)
                computed_total = (subtotal + delivery_fee + tax_amount - discount_amount).quantize(MONEY_QUANT)
                if computed_total < 0:
                    raise ValidationError("Discount exceeds order value", errors=["discount_amount: too large"])
                if total_amount is not None and _money(total_amount, "total_amount") != computed_total:
                    raise ValidationError(
                        "Order total does not match items, fees and discount",
                        errors=[f"total_amount: expected {computed_total}, got {total_amount}"],
                    )

                reserve_stock(products, quantities)

                order = Order.objects.create(
                    buyer=buyer,
                    store=store,
                    subtotal=subtotal,
                    delivery_fee=delivery_fee,
                    tax_amount=tax_amount,
                    discount_amount=discount_amount,
                    total_amount=computed_total,
                    currency=(currency or "").upper() or "GHS",
                    buyer_notes=buyer_notes or "",
                )
                OrderItem.objects.bulk_create(
                    [
                        OrderItem(
                            order=order,
                            product=products[pid],
                            quantity=qty,
                            unit_price=products[pid].price,
                            total_price=(products[pid].price * qty).quantize(MONEY_QUANT),
                            product_name=products[pid].name,
                        )
                        for pid, qty in quantities.items()
                    ]
                )
                DeliveryInfo.objects.create(
                    order=order,
                    recipient_name=delivery_info["recipient_name"],
                    phone=delivery_info["phone"],
                    address=delivery_info["address"],
                    city=delivery_info["city"],
                    region=delivery_info["region"],
                    notes=delivery_info.get("notes", ""),
                )
                record_initial_status(order, changed_by=buyer)

                CacheInvalidator(self.cache).add_order(order, include_items=True).flush_on_commit()
                self._notify(store.owner_id, "New Order", f"You received a new order #{order.pk}.", order)

            span.set_attribute("order.id", str(order.pk))
            self.logger.info(f"Created order {order.pk} for user {buyer.pk}: {len(quantities)} items, total {computed_total}")
            return order

    @BaseService.log_performance
    @BaseService.returns_result
    def update_order_status(self, actor, order_id, new_status: str, reason: str = "") -> ServiceResult[Order]:
        """
        Seller (store owner) or admin fulfillment transition.

        COMPLETED is reserved to escrow release. CANCELLED is delegated to
        ``cancel_order``. Progressing past CONFIRMED requires a settled payment.
        """
        if new_status not in dict(Order.STATUS_CHOICES):
            raise ValidationError(f"Unknown order status: {new_status}", errors=[f"status: {new_status} is not valid"])

        order = self._get_order(order_id)
        if not (is_order_seller(order, actor) or is_admin(actor)):
            raise AuthorizationError("Only the seller of this order can update its status")

        if new_status == Order.CANCELLED:
            return self.cancel_order(actor, order_id, reason)
        if new_status == Order.COMPLETED:
            raise InvalidTransition(
                "order", order.status, new_status, "Orders are completed when escrowed funds are released"
            )

        with transaction.atomic():
            order = Order.objects.select_for_update().select_related("store").get(pk=order.pk)
            ensure_order_transition(order, new_status)
            if new_status in PAID_FULFILLMENT_STATUSES and order.payment_status != Order.PAYMENT_SUCCESS:
                raise PreconditionFailed(
                    f"Cannot move order to {new_status} while payment is {order.payment_status}, expected SUCCESS"
                )

            extra_fields = []
            if new_status == Order.DELIVERED:
                order.delivered_at = timezone.now()
                extra_fields.append("delivered_at")
            if new_status in (Order.OUT_FOR_DELIVERY, Order.DELIVERED):
                DeliveryInfo.objects.filter(order=order).update(status_updated_at=timezone.now())

            transition_order(order, new_status, changed_by=actor, reason=reason, update_fields=extra_fields)

            CacheInvalidator(self.cache).add_order(order).flush_on_commit()
            self._notify(
                order.buyer_id,
                "Order Update",
                f"Your order #{order.pk} is now {order.get_status_display().lower()}.",
                order,
            )
        return order

    @BaseService.log_performance
    @BaseService.returns_result
    def cancel_order(self, actor, order_id, reason: str = "") -> ServiceResult[Order]:
        """
        Cancel an order and restore its stock.

        Buyers may cancel PENDING orders, sellers PENDING or CONFIRMED ones,
        admins any cancellable order. A paid order whose escrow still holds
        the funds is refunded through the gateway first.
        """
        order = self._get_order(order_id)

        if is_admin(actor):
            allowed = CANCELLABLE_STATUSES
        elif is_order_seller(order, actor):
            allowed = SELLER_CANCELLABLE
        elif is_order_buyer(order, actor):
            allowed = BUYER_CANCELLABLE
        else:
            raise AuthorizationError("You do not have permission to cancel this order")

        if order.status not in allowed:
            raise InvalidTransition(
                "order",
                order.status,
                Order.CANCELLED,
                f"Cannot cancel order in status {order.status}, expected one of {', '.join(sorted(allowed))}",
            )

        reason = (reason or "").strip() or "Cancelled by request"

        if order.payment_status == Order.PAYMENT_SUCCESS:
            order = self._cancel_paid_order(actor, order, reason, allowed)
        else:
            with transaction.atomic():
                order = Order.objects.select_for_update().select_related("store").get(pk=order.pk)
                if order.status not in allowed:
                    raise InvalidTransition("order", order.status, Order.CANCELLED)
                cancel_locked_order(order, changed_by=actor, reason=reason)
                self._after_cancel(actor, order, reason)

        self.logger.info(f"Order {order.pk} cancelled by {actor.pk}: {reason}")
        return order

    def _cancel_paid_order(self, actor, order: Order, reason: str, allowed) -> Order:
        escrow = Escrow.objects.filter(order=order).first()
        if escrow is None:
            raise PreconditionFailed("Paid order has no escrow record; contact support")
        if escrow.release_status == Escrow.PROCESSING:
            raise ConflictError("Escrow funds are being processed, try again shortly")
        if escrow.release_status != Escrow.PENDING:
            raise PreconditionFailed(
                f"Escrow is {escrow.release_status}; the order cannot be cancelled automatically"
            )

        def finalize(refunded_escrow: Escrow, amount: Decimal) -> None:
            locked = Order.objects.select_for_update().select_related("store").get(pk=order.pk)
            locked.refund_amount = amount
            locked.refund_reason = reason
            fields = ["refund_amount", "refund_reason"]
            if can_transition_payment(locked.payment_status, Order.PAYMENT_REFUNDED):
                transition_payment_status(locked, Order.PAYMENT_REFUNDED, save=False)
                fields.append("payment_status")
            if locked.status in allowed and is_cancellable(locked):
                cancel_locked_order(locked, changed_by=actor, reason=reason, update_fields=fields)
            else:
                # Status moved on while the refund was in flight; keep the refund bookkeeping
                locked.save(update_fields=[*fields, "updated_at"])
                self.logger.warning(f"Order {locked.pk} refunded but left in status {locked.status}")
            self._after_cancel(actor, locked, reason)

        self.refund_service.refund_escrow(
            escrow.pk,
            None,
            reason=f"Order #{order.pk} cancelled - {reason}",
            finalize=finalize,
            source="cancellation",
        )
        order.refresh_from_db()
        return order

    def _after_cancel(self, actor, order: Order, reason: str) -> None:
        CacheInvalidator(self.cache).add_order(order, include_items=True).flush_on_commit()
        other = order.store.owner_id if actor.pk == order.buyer_id else order.buyer_id
        self._notify(other, "Order Cancelled", f"Order #{order.pk} was cancelled. Reason: {reason}", order)
        if order.buyer.email:
            run_after_commit(
                self.notifier.email_notify,
                order.buyer.email,
                "Order cancelled",
                "order_cancelled",
                {"order_id": str(order.pk), "reason": reason},
                description="order cancellation email",
            )

    @BaseService.log_performance
    @BaseService.returns_result
    def get_order(self, user, order_id) -> ServiceResult[Order]:
        """Order details for its buyer, its seller or an admin."""
        order = (
            Order.objects.select_related("store", "buyer", "delivery")
            .prefetch_related("items")
            .filter(pk=order_id)
            .first()
        )
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        require_order_party(order, user)
        return order

    @BaseService.log_performance
    @BaseService.returns_result
    def list_buyer_orders(
        self, buyer, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict[str, Any]]:
        queryset = Order.objects.filter(buyer=buyer).select_related("store").prefetch_related("items")
        if status:
            queryset = queryset.filter(status=status)
        return paginate(queryset.order_by("-created_at"), page, page_size)

    @BaseService.log_performance
    @BaseService.returns_result
    def list_store_orders(
        self, seller, store_id=None, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict[str, Any]]:
        """Orders received by the seller's stores (optionally one store)."""
        queryset = Order.objects.filter(store__owner=seller)
        if store_id:
            if not Store.objects.filter(pk=store_id, owner=seller).exists() and not is_admin(seller):
                raise AuthorizationError("You do not own this store")
            queryset = Order.objects.filter(store_id=store_id)
        if status:
            queryset = queryset.filter(status=status)
        queryset = queryset.select_related("store", "buyer").prefetch_related("items").order_by("-created_at")
        return paginate(queryset, page, page_size)

    @BaseService.log_performance
    @BaseService.returns_result
    def get_status_history(self, user, order_id) -> ServiceResult[List[StatusChange]]:
        order = self._get_order(order_id)
        require_order_party(order, user)
        return list(StatusChange.objects.filter(order=order).select_related("changed_by"))
