"""Courier assignment and delivery progress for paid orders."""

from django.db import transaction
from django.utils import timezone

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.notifications import NotifierInterface
from marketplace.models import DeliveryInfo, Order
from utils.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from utils.rbac import is_admin, is_order_seller
from utils.service_base import BaseService, ServiceResult
from utils.side_effects import run_after_commit

from .state_machine import ensure_order_transition, transition_order

COURIER_ASSIGNABLE = (Order.CONFIRMED, Order.PROCESSING)
DELIVERY_STATUSES = (Order.OUT_FOR_DELIVERY, Order.DELIVERED)

class DeliveryService(BaseService):
    def __init__(self, notifier: NotifierInterface, cache: CacheInterface):
        super().__init__()
        self.notifier = notifier
        self.cache = cache

    def _lock_seller_order(self, seller, order_id) -> Order:
        order = Order.objects.select_for_update().select_related("store").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not (is_order_seller(order, seller) or is_admin(seller)):
            raise AuthorizationError("Only the seller of this order can manage its delivery")
        return order

    def _notify_buyer(self, order: Order, title: str, body: str) -> None:
        run_after_commit(
            self.notifier.notify,
            order.buyer_id,
            title,
            body,
            "delivery_update",
            {"orderId": str(order.pk), "status": order.status},
            description="delivery notification",
        )

    @BaseService.log_performance
    @BaseService.returns_result
    def assign_courier(
        self,
        seller,
        order_id,
        courier_service: str,
        driver_name: str,
        driver_phone: str = "",
        driver_vehicle_number: str = "",
        tracking_number: str = "",
    ) -> ServiceResult[Order]:
        """
        Hand a paid order to a courier; the order moves to SHIPPED.

        Raises (as ServiceResult errors):
            PreconditionFailed: order not CONFIRMED/PROCESSING or not paid
            ConflictError: a courier is already assigned
        """
        missing = [name for name, value in (("courier_service", courier_service), ("driver_name", driver_name)) if not value]
        if missing:
            raise ValidationError("Courier details are incomplete", errors=[f"{m}: This field is required." for m in missing])

        with transaction.atomic():
            order = self._lock_seller_order(seller, order_id)
            delivery = DeliveryInfo.objects.select_for_update().filter(order=order).first()
            if delivery is None:
                raise PreconditionFailed("Order has no delivery information")
            if delivery.has_courier:
                raise ConflictError(f"A courier ({delivery.courier_service}) is already assigned to this order")
            if order.status not in COURIER_ASSIGNABLE:
                raise PreconditionFailed(
                    f"cannot assign courier for order in status {order.status}, expected CONFIRMED or PROCESSING"
                )
            if order.payment_status != Order.PAYMENT_SUCCESS:
                raise PreconditionFailed(f"cannot assign courier while payment is {order.payment_status}")

            now = timezone.now()
            delivery.courier_service = courier_service
            delivery.driver_name = driver_name
            delivery.driver_phone = driver_phone or ""
            delivery.driver_vehicle_number = driver_vehicle_number or ""
            delivery.tracking_number = tracking_number or ""
            delivery.courier_assigned_at = now
            delivery.status_updated_at = now
            delivery.save()

            transition_order(order, Order.SHIPPED, changed_by=seller, reason=f"Courier assigned: {courier_service}")

            CacheInvalidator(self.cache).add_order(order).flush_on_commit()
            self._notify_buyer(
                order,
                "Order Shipped",
                f"Your order #{order.pk} has been handed to {courier_service} ({driver_name}).",
            )

        self.logger.info(f"Courier {courier_service} assigned to order {order.pk}")
        return order

    @BaseService.log_performance
    @BaseService.returns_result
    def set_delivery_status(self, seller, order_id, status: str) -> ServiceResult[Order]:
        """Mark an order OUT_FOR_DELIVERY or DELIVERED."""
        if status not in DELIVERY_STATUSES:
            raise ValidationError(
                f"Delivery status must be one of {', '.join(DELIVERY_STATUSES)}",
                errors=[f"status: {status} is not a delivery status"],
            )

        with transaction.atomic():
            order = self._lock_seller_order(seller, order_id)
            ensure_order_transition(order, status)

            now = timezone.now()
            DeliveryInfo.objects.filter(order=order).update(status_updated_at=now)
            extra_fields = []
            if status == Order.DELIVERED:
                order.delivered_at = now
                extra_fields.append("delivered_at")

            transition_order(order, status, changed_by=seller, reason="Delivery status updated", update_fields=extra_fields)

            CacheInvalidator(self.cache).add_order(order).flush_on_commit()
            if status == Order.DELIVERED:
                self._notify_buyer(
                    order,
                    "Order Delivered",
                    f"Your order #{order.pk} was delivered. Please confirm receipt to release payment to the seller.",
                )
            else:
                self._notify_buyer(order, "Out for Delivery", f"Your order #{order.pk} is out for delivery.")

        return order
