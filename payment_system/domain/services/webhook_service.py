"""
WebhookService - applies gateway charge events to the ledger.

Gateway webhooks are at-least-once and may be duplicated or reordered. The
handler is idempotent per Payment: a Payment already SUCCESS (or FAILED on
the failure path) is skipped. Each order of a multi-store checkout settles in
its own transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.utils import timezone

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.notifications import NotifierInterface
from infrastructure.observability import add_span_attributes, get_tracer
from infrastructure.payments import GatewayInterface, from_minor_units
from marketplace.models import Order
from marketplace.ordering.domain.services.state_machine import (
    can_transition_payment,
    transition_order,
    transition_payment_status,
)
from payment_system.domain.charges import (
    HANDLED_EVENTS,
    ChargeDecodeError,
    ChargeEvent,
    decode_charge_event,
    decode_event_type,
)
from payment_system.domain.models import Escrow, Payment
from payment_system.infra.observability.metrics import payment_volume_total, webhook_events_total
from payment_system.security import PaymentAuditLogger
from utils.exceptions import AuthorizationError
from utils.service_base import BaseService, ServiceResult
from utils.side_effects import run_after_commit
from utils.transaction_utils import atomic_with_isolation, retry_on_deadlock

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Webhook outcomes
SETTLED = "settled"
FAILED = "failed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
AMOUNT_MISMATCH = "amount_mismatch"
UNKNOWN_REFERENCE = "unknown_reference"
MALFORMED = "malformed"

# Per-payment results
_APPLIED = "applied"
_SKIPPED = "skipped"
_MANUAL_REFUND = "manual_refund"


class WebhookProcessingError(Exception):
    """One or more orders could not be settled; the gateway should retry."""

    def __init__(self, reference: str, failed_order_ids: List[str]):
        self.reference = reference
        self.failed_order_ids = failed_order_ids
        super().__init__(f"Webhook {reference}: {len(failed_order_ids)} order(s) failed to settle")


@dataclass
class WebhookOutcome:
    event: str
    outcome: str
    reference: str = ""
    applied_order_ids: List[str] = field(default_factory=list)
    skipped_order_ids: List[str] = field(default_factory=list)
    manual_refund_order_ids: List[str] = field(default_factory=list)


class WebhookService(BaseService):
    def __init__(self, gateway: GatewayInterface, notifier: NotifierInterface, cache: CacheInterface):
        super().__init__()
        self.gateway = gateway
        self.notifier = notifier
        self.cache = cache

    @property
    def holding_period(self) -> timedelta:
        return timedelta(days=settings.ESCROW_HOLDING_PERIOD_DAYS)

    @BaseService.log_performance
    @BaseService.returns_result
    def handle(self, payload: bytes, signature: Optional[str], client_ip: str = "") -> ServiceResult[WebhookOutcome]:
        """
        Authenticate and apply one webhook delivery.

        Returns:
            ServiceResult with a WebhookOutcome. A bad signature fails with
            PERMISSION_DENIED; a malformed body is acknowledged with the
            MALFORMED outcome. Neither touches the ledger.

        Raises:
            WebhookProcessingError: some orders failed unexpectedly (after
                the remaining orders were processed)
        """
        with tracer.start_as_current_span("webhook.handle") as span:
            add_span_attributes(span, client_ip=client_ip)

            if not self.gateway.verify_webhook_signature(payload, signature):
                webhook_events_total.labels(event="unknown", outcome="bad_signature").inc()
                PaymentAuditLogger.log_security_event(
                    "webhook_signature_invalid",
                    client_ip,
                    details="Missing signature header" if not signature else "Signature mismatch",
                )
                raise AuthorizationError("Invalid webhook signature")

            event_type = "unknown"
            try:
                event_type, body = decode_event_type(payload)
                if event_type not in HANDLED_EVENTS:
                    self.logger.info(f"Ignoring unhandled webhook event type: {event_type}")
                    webhook_events_total.labels(event=event_type, outcome=IGNORED).inc()
                    return WebhookOutcome(event=event_type, outcome=IGNORED)
                event = decode_charge_event(body)
            except ChargeDecodeError as e:
                # Acknowledged so the gateway stops redelivering an undecodable payload
                webhook_events_total.labels(event=event_type, outcome=MALFORMED).inc()
                PaymentAuditLogger.log_security_event("webhook_payload_malformed", client_ip, details=str(e))
                self.logger.error(f"Malformed {event_type} webhook payload: {e}")
                return WebhookOutcome(event=event_type, outcome=MALFORMED)

            add_span_attributes(span, event=event.event, reference=event.reference, orders=len(event.target.order_ids))

            if event.is_success:
                outcome = self._handle_charge_success(event)
            else:
                outcome = self._handle_charge_failed(event)

            webhook_events_total.labels(event=event.event, outcome=outcome.outcome).inc()
            return outcome

    def _matched_payments(self, event: ChargeEvent) -> List[Payment]:
        return list(
            Payment.objects.select_related("order")
            .filter(reference=event.reference, order_id__in=event.target.order_ids)
            .order_by("created_at")
        )

    # charge.success

    def _handle_charge_success(self, event: ChargeEvent) -> WebhookOutcome:
        outcome = WebhookOutcome(event=event.event, outcome=SETTLED, reference=event.reference)

        payments = self._matched_payments(event)
        if not payments:
            self.logger.warning(f"charge.success for unknown reference {event.reference}")
            outcome.outcome = UNKNOWN_REFERENCE
            return outcome

        pending = [p for p in payments if p.status not in (Payment.SUCCESS, Payment.FAILED)]
        if not pending:
            self.logger.info(f"Duplicate charge.success for {event.reference}, all payments already settled")
            outcome.outcome = DUPLICATE
            outcome.skipped_order_ids = [str(p.order_id) for p in payments]
            return outcome

        # The charge covers every matched order, settled or not
        expected = sum((p.order.total_amount for p in payments), Decimal("0.00"))
        received = from_minor_units(event.amount_minor)
        tolerance = Decimal(str(settings.PAYMENT_AMOUNT_TOLERANCE))
        currencies = {p.currency for p in payments}
        currency_ok = not event.currency or currencies == {event.currency}
        if abs(expected - received) > tolerance or not currency_ok:
            PaymentAuditLogger.log_amount_mismatch(
                event.reference,
                f"{expected} {'/'.join(sorted(currencies))}",
                f"{received} {event.currency}",
            )
            outcome.outcome = AMOUNT_MISMATCH
            return outcome

        failed_order_ids = []
        for payment in payments:
            order_id = str(payment.order_id)
            if payment.status in (Payment.SUCCESS, Payment.FAILED):
                outcome.skipped_order_ids.append(order_id)
                continue
            try:
                result = self._settle_payment(payment.pk, event)
            except Exception as e:
                # Siblings keep their own transactions; the gateway retry resettles only this one
                self.logger.error(f"Failed to settle payment {payment.pk} for order {order_id}: {e}", exc_info=True)
                failed_order_ids.append(order_id)
                continue

            if result == _APPLIED:
                outcome.applied_order_ids.append(order_id)
            elif result == _MANUAL_REFUND:
                outcome.manual_refund_order_ids.append(order_id)
            else:
                outcome.skipped_order_ids.append(order_id)

        if failed_order_ids:
            webhook_events_total.labels(event=event.event, outcome="error").inc()
            raise WebhookProcessingError(event.reference, failed_order_ids)

        if not outcome.applied_order_ids and not outcome.manual_refund_order_ids:
            outcome.outcome = DUPLICATE
        return outcome

    @retry_on_deadlock()
    def _settle_payment(self, payment_id, event: ChargeEvent) -> str:
        """Mark one payment SUCCESS, confirm its order and open the escrow, in one transaction."""
        invalidator = CacheInvalidator(self.cache)
        now = timezone.now()

        with atomic_with_isolation():
            payment = Payment.objects.select_for_update().get(pk=payment_id)
            if payment.status == Payment.SUCCESS:
                return _SKIPPED
            if payment.status == Payment.FAILED:
                self.logger.warning(f"charge.success for FAILED payment {payment.pk}; leaving it FAILED")
                return _SKIPPED

            order = Order.objects.select_for_update().select_related("store", "buyer").get(pk=payment.order_id)

            payment.status = Payment.SUCCESS
            payment.gateway_status = event.gateway_status or "success"
            payment.paid_at = now
            payment.metadata = {**payment.metadata, "gatewayAmount": event.amount_minor, "gatewayCurrency": event.currency}

            payable = order.status == Order.PENDING and can_transition_payment(order.payment_status, Order.PAYMENT_SUCCESS)
            if not payable:
                # Paid after cancellation or after another charge already settled the order
                payment.metadata["requires_manual_refund"] = True
                payment.save(update_fields=["status", "gateway_status", "paid_at", "metadata", "updated_at"])
                self.logger.error(
                    f"Payment {payment.pk} settled for order {order.pk} in status {order.status}/"
                    f"{order.payment_status}; manual refund required"
                )
                invalidator.add_order(order)
                invalidator.flush_on_commit()
                return _MANUAL_REFUND

            payment.save(update_fields=["status", "gateway_status", "paid_at", "metadata", "updated_at"])
            transition_payment_status(order, Order.PAYMENT_SUCCESS, save=False)
            transition_order(
                order,
                Order.CONFIRMED,
                reason=f"Payment confirmed via gateway ({event.reference})",
                update_fields=["payment_status"],
            )

            escrow = Escrow.objects.create(
                order=order,
                payment=payment,
                amount_held=payment.amount,
                currency=payment.currency,
                release_date=now + self.holding_period,
            )

            invalidator.add_order(order, include_items=True)
            invalidator.flush_on_commit()
            run_after_commit(self._notify_payment_success, order, escrow, description="payment success notification")

        payment_volume_total.labels(currency=payment.currency, status="success").inc(float(payment.amount))
        PaymentAuditLogger.log_payment_success(payment.pk, order.pk, payment.amount, event.reference)
        return _APPLIED

    def _notify_payment_success(self, order: Order, escrow: Escrow) -> None:
        data = {
            "order_id": str(order.pk),
            "buyer_name": order.buyer.display_name,
            "amount": str(escrow.amount_held),
            "currency": escrow.currency,
        }
        self.notifier.notify(
            order.buyer_id,
            "Payment Successful",
            f"Your payment of {escrow.amount_held} {escrow.currency} for order #{order.pk} was successful.",
            "ORDER_PAYMENT_SUCCESS",
            {"orderId": str(order.pk), "escrowId": str(escrow.pk)},
        )
        self.notifier.notify(
            order.store.owner_id,
            "New Paid Order",
            f"Order #{order.pk} has been paid and is ready to be processed.",
            "ORDER_PAYMENT_SUCCESS",
            {"orderId": str(order.pk)},
        )
        if order.buyer.email:
            self.notifier.email_notify(order.buyer.email, "Payment received", "payment_success", data)

    # charge.failed

    def _handle_charge_failed(self, event: ChargeEvent) -> WebhookOutcome:
        outcome = WebhookOutcome(event=event.event, outcome=FAILED, reference=event.reference)

        payments = self._matched_payments(event)
        if not payments:
            self.logger.warning(f"charge.failed for unknown reference {event.reference}")
            outcome.outcome = UNKNOWN_REFERENCE
            return outcome

        for payment in payments:
            if self._fail_payment(payment.pk, event):
                outcome.applied_order_ids.append(str(payment.order_id))
            else:
                outcome.skipped_order_ids.append(str(payment.order_id))

        if not outcome.applied_order_ids:
            outcome.outcome = DUPLICATE
        return outcome

    @retry_on_deadlock()
    def _fail_payment(self, payment_id, event: ChargeEvent) -> bool:
        invalidator = CacheInvalidator(self.cache)
        with atomic_with_isolation():
            payment = Payment.objects.select_for_update().get(pk=payment_id)
            if payment.status in (Payment.SUCCESS, Payment.FAILED):
                return False

            order = Order.objects.select_for_update().select_related("store", "buyer").get(pk=payment.order_id)

            payment.status = Payment.FAILED
            payment.gateway_status = event.gateway_status or "failed"
            payment.save(update_fields=["status", "gateway_status", "updated_at"])

            # Order status stays PENDING so the buyer can retry checkout
            if can_transition_payment(order.payment_status, Order.PAYMENT_FAILED):
                transition_payment_status(order, Order.PAYMENT_FAILED)

            invalidator.add_order(order)
            invalidator.flush_on_commit()
            run_after_commit(self._notify_payment_failed, order, description="payment failure notification")

        payment_volume_total.labels(currency=payment.currency, status="failed").inc(float(payment.amount))
        PaymentAuditLogger.log_payment_failure(payment.pk, order.pk, event.reference, event.gateway_status)
        return True

    def _notify_payment_failed(self, order: Order) -> None:
        self.notifier.notify(
            order.buyer_id,
            "Payment Failed",
            f"Your payment for order #{order.pk} failed. Please try again.",
            "ORDER_PAYMENT_FAILED",
            {"orderId": str(order.pk)},
        )
        if order.buyer.email:
            self.notifier.email_notify(
                order.buyer.email,
                "Payment failed",
                "payment_failed",
                {"order_id": str(order.pk), "buyer_name": order.buyer.display_name},
            )
