"""
CheckoutService - opens one gateway charge for one or more orders.

Checkout never touches stock or order status; it only creates a payment
attempt (one Payment per order, all sharing the gateway reference and a
fresh checkout session id).
"""

import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db import transaction

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.payments import GatewayException, GatewayInterface, to_minor_units
from marketplace.models import Order
from marketplace.ordering.domain.services.state_machine import transition_payment_status
from payment_system.domain.charges import charge_target_for
from payment_system.domain.models import Payment
from payment_system.infra.observability.metrics import checkout_sessions_total
from payment_system.security import PaymentAuditLogger
from utils.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from utils.logging_utils import mask_value
from utils.service_base import BaseService, ServiceResult

CHECKOUT_PAYABLE_PAYMENT_STATUSES = (Order.PAYMENT_PENDING, Order.PAYMENT_FAILED)


@dataclass
class CheckoutSession:
    checkout_session_id: str
    authorization_url: str
    reference: str
    total_amount: Decimal
    currency: str
    order_ids: List[str] = field(default_factory=list)
    payment_ids: List[str] = field(default_factory=list)

    @property
    def order_count(self) -> int:
        return len(self.order_ids)


def generate_checkout_session_id() -> str:
    return f"cs_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


class CheckoutService(BaseService):
    def __init__(self, gateway: GatewayInterface, cache: CacheInterface):
        super().__init__()
        self.gateway = gateway
        self.cache = cache

    def _load_orders(self, buyer, order_ids: List[str]) -> List[Order]:
        orders = {str(o.pk): o for o in Order.objects.select_related("store").filter(pk__in=order_ids)}
        missing = [oid for oid in order_ids if oid not in orders]
        if missing:
            raise NotFoundError("One or more orders not found", errors=[f"order {oid} not found" for oid in missing])

        ordered = [orders[oid] for oid in order_ids]
        if any(o.buyer_id != buyer.pk for o in ordered):
            raise AuthorizationError("You can only check out your own orders")

        not_payable = [
            o for o in ordered if o.status != Order.PENDING or o.payment_status not in CHECKOUT_PAYABLE_PAYMENT_STATUSES
        ]
        if not_payable:
            raise PreconditionFailed(
                "All orders must be PENDING with a PENDING or FAILED payment",
                errors=[f"order {o.pk}: status {o.status}, payment {o.payment_status}" for o in not_payable],
            )

        currencies = {o.currency for o in ordered}
        if len(currencies) > 1:
            raise ValidationError("Orders in one checkout must share a currency", errors=sorted(currencies))
        return ordered

    @BaseService.log_performance
    @BaseService.returns_result
    def create_checkout(
        self,
        buyer,
        order_ids: List[str],
        email: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> ServiceResult[CheckoutSession]:
        """
        Open one gateway charge covering every order in ``order_ids``.

        Args:
            buyer: User paying for the orders
            order_ids: one order (single store) or several (multi-store cart)
            email: payer email sent to the gateway, defaults to the buyer's
            callback_url: where the gateway redirects after payment

        Returns:
            ServiceResult with a CheckoutSession
        """
        order_ids = [str(oid) for oid in (order_ids or [])]
        if not order_ids:
            raise ValidationError("Order IDs are required", errors=["order_ids: This list may not be empty."])
        if len(set(order_ids)) != len(order_ids):
            raise ValidationError("Duplicate order IDs", errors=["order_ids: Duplicate entries."])

        email = email or buyer.email
        if not email:
            raise ValidationError("Email is required", errors=["email: This field is required."])

        orders = self._load_orders(buyer, order_ids)
        total = sum((o.total_amount for o in orders), Decimal("0.00"))
        currency = orders[0].currency or settings.DEFAULT_CURRENCY

        session_id = generate_checkout_session_id()
        reference = f"pay_{session_id}"
        target = charge_target_for(order_ids, session_id)
        metadata = {
            **target.to_metadata(),
            "buyerId": str(buyer.pk),
            "storeIds": sorted({str(o.store_id) for o in orders}),
            "orderCount": len(orders),
        }

        try:
            charge = self.gateway.init_charge(
                amount_minor=to_minor_units(total),
                currency=currency,
                reference=reference,
                email=email,
                metadata=metadata,
                callback_url=callback_url or f"{settings.FRONTEND_URL}/payment/success?session={session_id}",
            )
        except GatewayException as e:
            checkout_sessions_total.labels(outcome="gateway_error").inc()
            self.logger.error(f"Gateway rejected checkout for {len(orders)} order(s) ({mask_value(email)}): {e}")
            raise ExternalServiceError(detail=str(e))

        payment_ids = []
        invalidator = CacheInvalidator(self.cache)
        with transaction.atomic():
            locked = {str(o.pk): o for o in Order.objects.select_for_update().select_related("store").filter(pk__in=order_ids)}
            for order_id in order_ids:
                order = locked[order_id]
                # Re-check under lock: a webhook or cancellation may have landed meanwhile
                if order.status != Order.PENDING or order.payment_status not in CHECKOUT_PAYABLE_PAYMENT_STATUSES:
                    raise PreconditionFailed(f"Order {order.pk} is no longer awaiting payment")

                payment = Payment.objects.create(
                    order=order,
                    buyer=buyer,
                    amount=order.total_amount,
                    currency=order.currency,
                    reference=charge.reference,
                    checkout_session=session_id,
                    gateway_status="pending",
                    metadata={
                        "authorizationUrl": charge.authorization_url,
                        "multiStore": len(orders) > 1,
                        "totalOrders": len(orders),
                    },
                )
                payment_ids.append(str(payment.pk))

                order.checkout_session = session_id
                if order.payment_status == Order.PAYMENT_FAILED:
                    transition_payment_status(order, Order.PAYMENT_PENDING, allow_retry=True, update_fields=["checkout_session"])
                else:
                    order.save(update_fields=["checkout_session", "updated_at"])
                invalidator.add_order(order)
            invalidator.flush_on_commit()

        checkout_sessions_total.labels(outcome="opened").inc()
        PaymentAuditLogger.log_checkout(buyer.pk, session_id, charge.reference, total, len(orders))

        return CheckoutSession(
            checkout_session_id=session_id,
            authorization_url=charge.authorization_url,
            reference=charge.reference,
            total_amount=total,
            currency=currency,
            order_ids=order_ids,
            payment_ids=payment_ids,
        )
