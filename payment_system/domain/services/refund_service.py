"""
Refunds of escrowed funds back to the buyer.

Used by dispute resolution and by cancellation of a paid order. The escrow
is claimed (PENDING -> PROCESSING) before the gateway call so a concurrent
release cannot also move the same funds.
"""

from decimal import Decimal
from typing import Callable, Optional


from infrastructure.payments import GatewayInterface, to_minor_units
from payment_system.domain.models import Escrow
from payment_system.infra.observability.metrics import refunds_total
from payment_system.security import PaymentAuditLogger
from utils.exceptions import ConflictError, ExternalServiceError, NotFoundError, PreconditionFailed, ValidationError
from utils.service_base import BaseService
from utils.transaction_utils import atomic_with_isolation

REFUND_TIMEOUT_REASON = "Refund timed out - outcome unknown, reconcile with gateway before retrying"


class RefundService(BaseService):
    """
    Refunds an escrow through the gateway and records the outcome.

    ``refund_escrow`` raises DomainError subclasses; callers run inside their
    own ``returns_result`` boundary.
    """

    def __init__(self, gateway: GatewayInterface):
        super().__init__()
        self.gateway = gateway

    def _claim(self, escrow_id) -> Escrow:
        claimed = Escrow.objects.filter(pk=escrow_id, release_status=Escrow.PENDING).update(
            release_status=Escrow.PROCESSING
        )
        escrow = Escrow.objects.select_related("payment", "order").filter(pk=escrow_id).first()
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        if claimed:
            return escrow

        if escrow.release_status == Escrow.PROCESSING:
            raise ConflictError("Escrow funds are being processed by another operation, try again shortly")
        raise PreconditionFailed(f"Escrow is {escrow.release_status}, funds are no longer held")

    def _revert_claim(self, escrow_id) -> None:
        Escrow.objects.filter(pk=escrow_id, release_status=Escrow.PROCESSING).update(release_status=Escrow.PENDING)

    @BaseService.log_performance
    def refund_escrow(
        self,
        escrow_id,
        amount: Optional[Decimal],
        reason: str,
        finalize: Optional[Callable[[Escrow, Decimal], None]] = None,
        source: str = "dispute",
    ) -> Escrow:
        """
        Refund ``amount`` (default: everything held) from an escrow.

        Args:
            escrow_id: escrow to refund
            amount: amount in major units, 0 < amount <= amount_held
            reason: gateway-facing reason, also stored on the escrow
            finalize: called as ``finalize(escrow, amount)`` inside the
                transaction that marks the escrow REFUNDED
            source: metrics label ('dispute' or 'cancellation')

        Raises:
            ConflictError: escrow is claimed by a release or another refund
            PreconditionFailed: escrow is no longer PENDING
            ExternalServiceError: gateway rejected or timed out; on rejection
                the escrow is back to PENDING and the call can be retried
        """
        escrow = Escrow.objects.filter(pk=escrow_id).only("amount_held").first()
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")

        amount = escrow.amount_held if amount is None else Decimal(str(amount))
        if amount <= 0 or amount > escrow.amount_held:
            raise ValidationError(
                f"Refund amount must be greater than 0 and at most {escrow.amount_held}",
                errors=[f"refund_amount: {amount} is outside (0, {escrow.amount_held}]"],
            )

        escrow = self._claim(escrow_id)

        # No transaction is open across the gateway call
        result = self.gateway.refund(escrow.payment.reference, to_minor_units(amount), reason)

        if not result.success:
            if result.timed_out:
                Escrow.objects.filter(pk=escrow.pk, release_status=Escrow.PROCESSING).update(
                    release_status=Escrow.FAILED,
                    release_reason=REFUND_TIMEOUT_REASON,
                )
                refunds_total.labels(source=source, outcome="timeout").inc()
            else:
                self._revert_claim(escrow.pk)
                refunds_total.labels(source=source, outcome="failed").inc()
            PaymentAuditLogger.log_refund(escrow.pk, escrow.order_id, amount, "failed", result.error)
            raise ExternalServiceError(
                "Refund could not be processed by the payment provider. Please try again later.",
                detail=result.error,
                timed_out=result.timed_out,
            )

        with atomic_with_isolation():
            escrow = Escrow.objects.select_for_update().get(pk=escrow.pk)
            escrow.release_status = Escrow.REFUNDED
            escrow.released_to = Escrow.RELEASED_TO_NONE
            escrow.release_reason = reason
            escrow.refund_reference = result.refund_reference
            escrow.save(update_fields=["release_status", "released_to", "release_reason", "refund_reference", "updated_at"])
            if finalize is not None:
                finalize(escrow, amount)

        refunds_total.labels(source=source, outcome="refunded").inc()
        PaymentAuditLogger.log_refund(escrow.pk, escrow.order_id, amount, "refunded", reason)
        return escrow
