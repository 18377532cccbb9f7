"""
EscrowService - release of escrowed funds to sellers.

Buyer confirmation and the scheduler share one release path. The escrow's
``release_status`` is the compare-and-set guard: a conditional UPDATE
PENDING -> PROCESSING is taken before the transfer, so only one caller ever
reaches the gateway. The loser sees zero updated rows and no-ops.

Ordering inside the release path: validate outside any transaction, claim,
call the gateway, then record the outcome in a short transaction.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.utils import timezone

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.cache.invalidation import ORDER_ESCROW_KEY
from infrastructure.notifications import NotifierInterface
from infrastructure.observability import add_span_attributes, get_tracer
from infrastructure.payments import GatewayInterface, to_minor_units
from marketplace.models import Order
from marketplace.ordering.domain.services.state_machine import transition_order
from payment_system.domain.models import Dispute, Escrow
from payment_system.infra.observability.metrics import escrow_releases_total, payout_volume_total
from payment_system.security import PaymentAuditLogger
from utils.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from utils.logging_utils import mask_value
from utils.rbac import is_order_buyer, require_admin, require_order_party
from utils.service_base import BaseService, ServiceResult, paginate
from utils.side_effects import run_after_commit
from utils.transaction_utils import atomic_with_isolation, financial_transaction

from .payout_account_service import PayoutAccountService

tracer = get_tracer(__name__)

TRIGGER_BUYER = "buyer_confirmed"
TRIGGER_AUTO = "auto_timer_expired"

RELEASED_TO_BY_TRIGGER = {
    TRIGGER_BUYER: Escrow.RELEASED_TO_BUYER_CONFIRMATION,
    TRIGGER_AUTO: Escrow.RELEASED_TO_AUTO_TIMER,
}

NO_PAYOUT_ACCOUNT_REASON = "No seller payment account found"
TRANSFER_TIMEOUT_REASON = "Transfer timed out - outcome unknown, reconcile with gateway before retrying"

# Release outcomes
RELEASED = "released"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class ReleaseOutcome:
    escrow_id: str
    order_id: str
    status: str
    reason: str = ""
    transfer_reference: str = ""


@dataclass
class ReleaseSummary:
    processed: int = 0
    released: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    outcomes: List[ReleaseOutcome] = field(default_factory=list)

    def add(self, outcome: ReleaseOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.status == RELEASED:
            self.released += 1
        elif outcome.status == FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "released": self.released,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def escrow_snapshot(escrow: Escrow) -> Dict[str, Any]:
    return {
        "id": str(escrow.pk),
        "order_id": str(escrow.order_id),
        "payment_id": str(escrow.payment_id),
        "amount_held": str(escrow.amount_held),
        "currency": escrow.currency,
        "release_status": escrow.release_status,
        "release_date": escrow.release_date.isoformat(),
        "released_at": escrow.released_at.isoformat() if escrow.released_at else None,
        "released_to": escrow.released_to,
        "release_reason": escrow.release_reason,
    }


class EscrowService(BaseService):
    """
    Escrow release, inspection and manual override.

    Dependencies:
    - GatewayInterface: payout transfers
    - PayoutAccountService: seller recipient lookup
    - NotifierInterface / CacheInterface: post-commit side effects
    """

    def __init__(
        self,
        gateway: GatewayInterface,
        payout_accounts: PayoutAccountService,
        notifier: NotifierInterface,
        cache: CacheInterface,
    ):
        super().__init__()
        self.gateway = gateway
        self.payout_accounts = payout_accounts
        self.notifier = notifier
        self.cache = cache

    # Release path

    def _has_open_dispute(self, order_id) -> bool:
        return Dispute.objects.filter(order_id=order_id, status=Dispute.PENDING).exists()

    def _fail_pending(self, escrow: Escrow, reason: str, trigger: str) -> ReleaseOutcome:
        """PENDING -> FAILED without touching the gateway (nothing was claimed)."""
        updated = Escrow.objects.filter(pk=escrow.pk, release_status=Escrow.PENDING).update(
            release_status=Escrow.FAILED,
            release_reason=reason,
            updated_at=timezone.now(),
        )
        if not updated:
            return ReleaseOutcome(str(escrow.pk), str(escrow.order_id), SKIPPED, "Escrow no longer pending")

        escrow_releases_total.labels(trigger=trigger, outcome=FAILED).inc()
        PaymentAuditLogger.log_escrow_release(escrow.pk, escrow.order_id, escrow.amount_held, trigger, FAILED, reason)
        self._invalidate(escrow.order)
        self._notify_release_failed(escrow, reason)
        return ReleaseOutcome(str(escrow.pk), str(escrow.order_id), FAILED, reason)

    def _release(self, escrow_id, trigger: str, actor=None, strict: bool = False) -> ReleaseOutcome:
        """
        Release one escrow to its seller.

        Args:
            escrow_id: escrow to release
            trigger: TRIGGER_BUYER or TRIGGER_AUTO
            actor: user recorded on the order status change
            strict: raise ValidationError on invalid transfer preconditions
                instead of marking the escrow FAILED
        """
        with tracer.start_as_current_span("escrow.release") as span:
            add_span_attributes(span, escrow_id=escrow_id, trigger=trigger)

            escrow = Escrow.objects.select_related("order__store", "order__buyer").filter(pk=escrow_id).first()
            if escrow is None:
                raise NotFoundError(f"Escrow {escrow_id} not found")
            order = escrow.order

            if escrow.release_status != Escrow.PENDING:
                return ReleaseOutcome(str(escrow.pk), str(order.pk), SKIPPED, f"Escrow is {escrow.release_status}")

            recipient = self.payout_accounts.get_payout_account(order.store_id)
            if recipient is None:
                self.logger.warning(f"No payout account for store {order.store_id}; escrow {escrow.pk} marked FAILED")
                return self._fail_pending(escrow, NO_PAYOUT_ACCOUNT_REASON, trigger)

            problems = []
            if escrow.amount_held is None or escrow.amount_held <= 0:
                problems.append("amount: must be greater than 0")
            if not recipient.recipient_id:
                problems.append("recipient: payout recipient identifier is missing")
            if not order.pk:
                problems.append("order: order id is missing")
            if problems:
                if strict:
                    raise ValidationError("Transfer preconditions not met", errors=problems)
                return self._fail_pending(escrow, "Transfer validation failed: " + "; ".join(problems), trigger)

            if self._has_open_dispute(order.pk):
                return ReleaseOutcome(str(escrow.pk), str(order.pk), SKIPPED, "Escrow frozen by an open dispute")

            claimed = Escrow.objects.filter(pk=escrow.pk, release_status=Escrow.PENDING).update(
                release_status=Escrow.PROCESSING,
                updated_at=timezone.now(),
            )
            if not claimed:
                self.logger.info(f"Escrow {escrow.pk} already claimed by another release; skipping")
                return ReleaseOutcome(str(escrow.pk), str(order.pk), SKIPPED, "Escrow already claimed")

            reason = f"Order #{order.pk} Escrow Release - {trigger}"
            result = self.gateway.transfer(
                amount_minor=to_minor_units(escrow.amount_held),
                currency=escrow.currency,
                recipient_id=recipient.recipient_id,
                reason=reason,
                reference=f"transfer_{order.pk.hex}_{int(time.time() * 1000)}",
            )

            if not result.success:
                failure = TRANSFER_TIMEOUT_REASON if result.timed_out else f"Transfer failed - {result.error}"
                Escrow.objects.filter(pk=escrow.pk, release_status=Escrow.PROCESSING).update(
                    release_status=Escrow.FAILED,
                    release_reason=failure,
                    updated_at=timezone.now(),
                )
                outcome_label = "timeout" if result.timed_out else FAILED
                escrow_releases_total.labels(trigger=trigger, outcome=outcome_label).inc()
                PaymentAuditLogger.log_escrow_release(
                    escrow.pk, order.pk, escrow.amount_held, trigger, FAILED, result.error
                )
                self.logger.error(
                    f"Transfer for escrow {escrow.pk} to {mask_value(recipient.recipient_id)} failed: {result.error}"
                )
                self._invalidate(order)
                self._notify_release_failed(escrow, failure)
                return ReleaseOutcome(str(escrow.pk), str(order.pk), FAILED, failure)

            invalidator = CacheInvalidator(self.cache)
            with atomic_with_isolation():
                escrow = Escrow.objects.select_for_update().get(pk=escrow.pk)
                escrow.release_status = Escrow.RELEASED
                escrow.released_at = timezone.now()
                escrow.released_to = RELEASED_TO_BY_TRIGGER[trigger]
                escrow.release_reason = reason
                escrow.transfer_reference = result.transfer_reference
                escrow.save(
                    update_fields=[
                        "release_status",
                        "released_at",
                        "released_to",
                        "release_reason",
                        "transfer_reference",
                        "updated_at",
                    ]
                )

                order = Order.objects.select_for_update().select_related("store", "buyer").get(pk=order.pk)
                if order.status == Order.DELIVERED:
                    transition_order(order, Order.COMPLETED, changed_by=actor, reason=f"Escrow released ({trigger})")
                else:
                    # Auto release backstop: the order keeps its fulfillment status
                    self.logger.info(f"Escrow {escrow.pk} released while order {order.pk} is {order.status}")

                invalidator.add_order(order)
                invalidator.flush_on_commit()
                run_after_commit(self._notify_released, order, escrow, description="escrow release notification")

            escrow_releases_total.labels(trigger=trigger, outcome=RELEASED).inc()
            payout_volume_total.labels(currency=escrow.currency).inc(float(escrow.amount_held))
            PaymentAuditLogger.log_escrow_release(escrow.pk, order.pk, escrow.amount_held, trigger, RELEASED, reason)
            return ReleaseOutcome(str(escrow.pk), str(order.pk), RELEASED, reason, result.transfer_reference)

    def _invalidate(self, order: Order) -> None:
        CacheInvalidator(self.cache).add_order(order).flush_on_commit()

    def _notify_released(self, order: Order, escrow: Escrow) -> None:
        data = {"order_id": str(order.pk), "amount": str(escrow.amount_held), "currency": escrow.currency}
        self.notifier.notify(
            order.store.owner_id,
            "Funds Released",
            f"{escrow.amount_held} {escrow.currency} for order #{order.pk} has been released to your account.",
            "payment_update",
            {"orderId": str(order.pk), "escrowId": str(escrow.pk)},
        )
        self.notifier.notify(
            order.buyer_id,
            "Order Completed",
            f"Order #{order.pk} is complete. Thank you for your purchase.",
            "payment_update",
            {"orderId": str(order.pk)},
        )
        if order.store.owner.email:
            self.notifier.email_notify(order.store.owner.email, "Funds released", "funds_released", data)

    def _notify_release_failed(self, escrow: Escrow, reason: str) -> None:
        order = escrow.order
        run_after_commit(
            self.notifier.email_notify,
            order.store.owner.email,
            "Payout needs attention",
            "escrow_release_failed",
            {"order_id": str(order.pk), "amount": str(escrow.amount_held), "currency": escrow.currency, "reason": reason},
            description="escrow failure email",
        )

    # Public operations

    @BaseService.log_performance
    @BaseService.returns_result
    def confirm_receipt(self, buyer, order_id) -> ServiceResult[ReleaseOutcome]:
        """
        Buyer confirms delivery; releases the escrow to the seller.

        Preconditions: caller is the buyer, order is DELIVERED, escrow is
        PENDING and no dispute is open. A concurrent scheduler release that
        wins the claim makes this call a no-op (status 'skipped').
        """
        order = Order.objects.select_related("store").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not is_order_buyer(order, buyer):
            raise AuthorizationError("Only the buyer can confirm receipt of this order")
        if order.status != Order.DELIVERED:
            raise PreconditionFailed(f"Cannot confirm receipt for order in status {order.status}, expected DELIVERED")

        escrow = Escrow.objects.filter(order=order).first()
        if escrow is None:
            raise PreconditionFailed("No escrow found for this order")
        if escrow.release_status == Escrow.PROCESSING:
            raise ConflictError("Escrow release is already in progress")
        if escrow.release_status != Escrow.PENDING:
            raise PreconditionFailed(f"Escrow is {escrow.release_status}, funds are no longer held")
        if self._has_open_dispute(order.pk):
            raise PreconditionFailed("Cannot confirm receipt while a dispute is open for this order")

        outcome = self._release(escrow.pk, TRIGGER_BUYER, actor=buyer, strict=True)

        if outcome.status == FAILED:
            if outcome.reason == NO_PAYOUT_ACCOUNT_REASON:
                raise PreconditionFailed("Seller has not set up a payout account. Support has been notified.")
            raise ExternalServiceError(
                "Funds could not be released to the seller. Our team has been notified.",
                detail=outcome.reason,
                timed_out=outcome.reason == TRANSFER_TIMEOUT_REASON,
            )
        return outcome

    @BaseService.log_performance
    def release_due_escrows(self, now=None, batch_size: int = 100) -> ReleaseSummary:
        """
        Release every PENDING escrow whose holding period has elapsed.

        Escrows of orders with an open dispute stay frozen. A failure on one
        escrow is recorded on it and does not stop the batch.
        """
        now = now or timezone.now()
        due_ids = list(
            Escrow.objects.filter(release_status=Escrow.PENDING, release_date__lte=now)
            .exclude(order__disputes__status=Dispute.PENDING)
            .order_by("release_date")
            .values_list("pk", flat=True)[:batch_size]
        )

        summary = ReleaseSummary()
        for escrow_id in due_ids:
            try:
                summary.add(self._release(escrow_id, TRIGGER_AUTO))
            except Exception as e:
                summary.errors += 1
                self.logger.error(f"Unexpected error releasing escrow {escrow_id}: {e}", exc_info=True)

        if due_ids:
            self.logger.info(f"Escrow scheduler pass: {summary.to_dict()}")
        return summary

    @BaseService.log_performance
    @BaseService.returns_result
    def release_escrow(self, escrow_id, now=None) -> ServiceResult[ReleaseOutcome]:
        """Release a single escrow through the timer path (its release date must have passed)."""
        now = now or timezone.now()
        escrow = Escrow.objects.filter(pk=escrow_id).first()
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        if escrow.release_date > now:
            raise PreconditionFailed(f"Escrow holding period ends at {escrow.release_date.isoformat()}")
        return self._release(escrow.pk, TRIGGER_AUTO)

    @BaseService.log_performance
    @BaseService.returns_result
    def get_escrow_details(self, user, escrow_id) -> ServiceResult[Escrow]:
        escrow = Escrow.objects.select_related("order__store", "payment").filter(pk=escrow_id).first()
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        require_order_party(escrow.order, user)
        return escrow

    @BaseService.log_performance
    @BaseService.returns_result
    def get_order_escrow_status(self, user, order_id) -> ServiceResult[Dict[str, Any]]:
        """Escrow state of an order plus whether the caller may confirm receipt now."""
        order = Order.objects.select_related("store").filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        require_order_party(order, user)

        cache_key = ORDER_ESCROW_KEY.format(order_id=order.pk)
        snapshot = self.cache.get(cache_key)
        if snapshot is None:
            escrow = Escrow.objects.filter(order=order).first()
            snapshot = escrow_snapshot(escrow) if escrow else {}
            self.cache.set(cache_key, snapshot)

        has_open_dispute = self._has_open_dispute(order.pk)
        can_confirm = (
            bool(snapshot)
            and is_order_buyer(order, user)
            and order.status == Order.DELIVERED
            and snapshot["release_status"] == Escrow.PENDING
            and not has_open_dispute
        )
        return {
            "order_id": str(order.pk),
            "order_status": order.status,
            "payment_status": order.payment_status,
            "escrow": snapshot or None,
            "has_open_dispute": has_open_dispute,
            "can_confirm_receipt": can_confirm,
        }

    @BaseService.log_performance
    @BaseService.returns_result
    def list_pending_escrows(
        self, admin, page: int = 1, page_size: int = 20, status: Optional[str] = None
    ) -> ServiceResult[Dict[str, Any]]:
        require_admin(admin)
        status = status or Escrow.PENDING
        if status not in dict(Escrow.STATUS_CHOICES):
            raise ValidationError(f"Unknown escrow status: {status}")

        queryset = Escrow.objects.select_related("order__store").filter(release_status=status).order_by("release_date")
        return paginate(queryset, page, page_size)

    @BaseService.log_performance
    @BaseService.returns_result
    def reset_failed_escrow(self, admin, escrow_id, reason: str) -> ServiceResult[Escrow]:
        """
        Manual override: FAILED -> PENDING after reconciling with the gateway.

        The next scheduler pass (or buyer confirmation) retries the release.
        """
        require_admin(admin)
        if not reason or not reason.strip():
            raise ValidationError("A reset reason is required", errors=["reason: This field is required."])

        escrow = self._reopen_failed(escrow_id, reason.strip())
        self.logger.warning(f"Escrow {escrow.pk} reset to PENDING by admin {admin.pk}: {reason}")
        return escrow

    @financial_transaction
    def _reopen_failed(self, escrow_id, reason: str) -> Escrow:
        escrow = Escrow.objects.select_for_update().select_related("order__store").filter(pk=escrow_id).first()
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        if escrow.release_status != Escrow.FAILED:
            raise PreconditionFailed(f"Only FAILED escrows can be reset, this one is {escrow.release_status}")

        escrow.release_status = Escrow.PENDING
        escrow.release_reason = f"{escrow.release_reason}\n[RESET by admin]: {reason}".strip()
        escrow.save(update_fields=["release_status", "release_reason", "updated_at"])
        self._invalidate(escrow.order)
        return escrow
