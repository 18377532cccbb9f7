"""
DisputeService - buyer disputes over paid orders.

An open (PENDING) dispute freezes the order's escrow: the scheduler skips it
and the buyer cannot confirm receipt. Resolution in the buyer's favor
refunds the escrow through RefundService; funds already released are only
flagged for a manual refund.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from infrastructure.cache import CacheInterface, CacheInvalidator
from infrastructure.notifications import NotifierInterface
from marketplace.models import Order
from marketplace.ordering.domain.services.cancellation import cancel_locked_order, is_cancellable
from marketplace.ordering.domain.services.state_machine import can_transition_payment, transition_payment_status
from payment_system.domain.models import Dispute, Escrow, Payment
from utils.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    ValidationError,
)
from utils.rbac import is_admin, is_order_buyer, require_admin
from utils.service_base import BaseService, ServiceResult, paginate
from utils.side_effects import run_after_commit

from .refund_service import RefundService

DISPUTE_TYPES = dict(Dispute.TYPE_CHOICES)


class DisputeService(BaseService):
    def __init__(self, refund_service: RefundService, notifier: NotifierInterface, cache: CacheInterface):
        super().__init__()
        self.refund_service = refund_service
        self.notifier = notifier
        self.cache = cache

    def _get_dispute(self, dispute_id) -> Dispute:
        dispute = Dispute.objects.select_related("order__store", "buyer", "seller").filter(pk=dispute_id).first()
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def _require_party(self, dispute: Dispute, user) -> None:
        if user.pk not in (dispute.buyer_id, dispute.seller_id):
            raise AuthorizationError("You are not a party to this dispute")

    def _invalidate(self, dispute: Dispute) -> None:
        CacheInvalidator(self.cache).add_dispute(dispute).add_order(dispute.order).flush_on_commit()

    def _notify(self, user_id, title: str, body: str, dispute: Dispute) -> None:
        run_after_commit(
            self.notifier.notify,
            user_id,
            title,
            body,
            "dispute",
            {"disputeId": str(dispute.pk), "orderId": str(dispute.order_id)},
            description=f"dispute notification '{title}'",
        )

    def _email(self, user, subject: str, template: str, data: Dict[str, Any]) -> None:
        if user.email:
            run_after_commit(self.notifier.email_notify, user.email, subject, template, data, description="dispute email")

    @BaseService.log_performance
    @BaseService.returns_result
    def open_dispute(
        self, buyer, order_id, description: str, dispute_type: str = "REFUND_REQUEST"
    ) -> ServiceResult[Dispute]:
        """
        Open a dispute on a paid order whose funds are still in escrow.

        Raises (as ServiceResult errors):
            ValidationError: missing description or unknown type
            PreconditionFailed: payment not SUCCESS or escrow not PENDING
            ConflictError: a PENDING or RESOLVED dispute already exists
        """
        if not description or not description.strip():
            raise ValidationError("Dispute reason is required", errors=["description: This field is required."])
        if dispute_type not in DISPUTE_TYPES:
            raise ValidationError("Invalid dispute type", errors=[f"dispute_type: must be one of {', '.join(DISPUTE_TYPES)}"])

        with transaction.atomic():
            order = Order.objects.select_for_update().select_related("store").filter(pk=order_id).first()
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if not is_order_buyer(order, buyer):
                raise AuthorizationError("Only the buyer can open a dispute for this order")

            payment = Payment.objects.filter(order=order, status=Payment.SUCCESS).order_by("-paid_at").first()
            if payment is None:
                raise PreconditionFailed("Dispute not eligible: payment was not successful")

            escrow = Escrow.objects.filter(order=order).first()
            if escrow is None or escrow.release_status != Escrow.PENDING:
                status = escrow.release_status if escrow else "missing"
                raise PreconditionFailed(
                    f"Funds are no longer held in escrow ({status}). Please contact support for assistance."
                )

            if Dispute.objects.filter(order=order, status__in=Dispute.ACTIVE_STATUSES).exists():
                raise ConflictError("A dispute already exists for this order")

            try:
                with transaction.atomic():
                    dispute = Dispute.objects.create(
                        order=order,
                        payment=payment,
                        buyer=buyer,
                        seller_id=order.store.owner_id,
                        dispute_type=dispute_type,
                        description=description.strip(),
                    )
            except IntegrityError:
                raise ConflictError("A dispute already exists for this order")

            label = DISPUTE_TYPES[dispute_type].lower()
            self._notify(order.store.owner_id, "Dispute Opened", f"A {label} has been filed for order #{order.pk}.", dispute)
            self._notify(buyer.pk, "Dispute Submitted", f"Your dispute for order #{order.pk} is under review.", dispute)
            self._email(order.store.owner, "Dispute opened", "dispute_opened", {"order_id": str(order.pk), "dispute_type": label})
            self._invalidate(dispute)

        self.logger.info(f"Dispute {dispute.pk} opened on order {order.pk} ({dispute_type})")
        return dispute

    @BaseService.log_performance
    @BaseService.returns_result
    def resolve_dispute(
        self,
        admin,
        dispute_id,
        status: str,
        resolution: str,
        refund_amount: Optional[Decimal] = None,
        refund_buyer: bool = True,
    ) -> ServiceResult[Dispute]:
        """
        Close a PENDING dispute.

        Args:
            admin: resolving administrator
            dispute_id: dispute to close
            status: RESOLVED or CANCELLED
            resolution: free-text outcome stored on the dispute
            refund_amount: partial refund (default: order total, capped by escrow)
            refund_buyer: RESOLVED in the buyer's favor; False closes it for the seller

        A gateway refund failure returns EXTERNAL_SERVICE_ERROR and leaves
        the dispute PENDING so the call can be repeated.
        """
        require_admin(admin)
        if status not in (Dispute.RESOLVED, Dispute.CANCELLED):
            raise ValidationError("Status must be RESOLVED or CANCELLED", errors=[f"status: {status} is not allowed"])
        if not resolution or not resolution.strip():
            raise ValidationError("Resolution is required", errors=["resolution: This field is required."])
        resolution = resolution.strip()

        dispute = self._get_dispute(dispute_id)
        if dispute.status != Dispute.PENDING:
            raise InvalidTransition("dispute", dispute.status, status)

        if status == Dispute.CANCELLED or not refund_buyer:
            return self._close(dispute, admin, status, resolution)

        escrow = Escrow.objects.filter(order_id=dispute.order_id).first()
        if escrow is None:
            raise PreconditionFailed("No escrow found for this order")

        if escrow.release_status == Escrow.PROCESSING:
            raise ConflictError("Escrow funds are being processed, try again shortly")

        if escrow.release_status in (Escrow.RELEASED, Escrow.FAILED):
            # No automated clawback of funds already paid out (or in an unknown state)
            self.logger.warning(f"Dispute {dispute.pk} resolved after escrow {escrow.release_status}; manual refund required")
            return self._close(dispute, admin, status, resolution + Dispute.MANUAL_REFUND_NOTE, manual_refund=True)

        if escrow.release_status == Escrow.REFUNDED:
            return self._close(dispute, admin, status, resolution)

        if refund_amount is None:
            amount = min(dispute.order.total_amount, escrow.amount_held)
        else:
            amount = Decimal(str(refund_amount))

        def finalize(refunded_escrow: Escrow, refunded: Decimal) -> None:
            order = Order.objects.select_for_update().get(pk=refunded_escrow.order_id)
            order.refund_amount = refunded
            order.refund_reason = resolution
            fields = ["refund_amount", "refund_reason"]
            target = Order.PAYMENT_REFUNDED if refunded >= order.total_amount else Order.PAYMENT_PARTIALLY_REFUNDED
            if can_transition_payment(order.payment_status, target):
                transition_payment_status(order, target, save=False)
                fields.append("payment_status")
            if is_cancellable(order):
                cancel_locked_order(order, changed_by=admin, reason=f"Dispute resolved: {resolution}", update_fields=fields)
            else:
                order.save(update_fields=[*fields, "updated_at"])
            self._mark_closed(dispute.pk, admin, status, resolution, refund_amount=refunded)

        self.refund_service.refund_escrow(
            escrow.pk,
            amount,
            reason=f"Dispute {dispute.pk} resolved: {resolution}",
            finalize=finalize,
            source="dispute",
        )

        dispute.refresh_from_db()
        self._after_close(dispute)
        return dispute

    def _mark_closed(self, dispute_id, admin, status, resolution, refund_amount=None, manual_refund=False) -> Dispute:
        dispute = Dispute.objects.select_for_update().get(pk=dispute_id)
        if dispute.status != Dispute.PENDING:
            if refund_amount is None:
                raise InvalidTransition("dispute", dispute.status, status)
            # Refund already went through; record it on the dispute regardless
            self.logger.warning(f"Dispute {dispute.pk} was {dispute.status} when its refund completed")
        dispute.status = status
        dispute.resolution = resolution
        dispute.resolved_at = timezone.now()
        dispute.resolved_by = admin
        dispute.refund_amount = refund_amount
        dispute.requires_manual_refund = manual_refund
        dispute.save(
            update_fields=[
                "status",
                "resolution",
                "resolved_at",
                "resolved_by",
                "refund_amount",
                "requires_manual_refund",
                "updated_at",
            ]
        )
        return dispute

    def _close(self, dispute: Dispute, admin, status, resolution, manual_refund=False) -> Dispute:
        with transaction.atomic():
            dispute = self._mark_closed(dispute.pk, admin, status, resolution, manual_refund=manual_refund)
            self._after_close(dispute)
        return dispute

    def _after_close(self, dispute: Dispute) -> None:
        body = f"The dispute for order #{dispute.order_id} has been {dispute.status.lower()}."
        self._notify(dispute.buyer_id, "Dispute Resolved", body, dispute)
        self._notify(dispute.seller_id, "Dispute Resolved", body, dispute)
        self._email(dispute.buyer, "Dispute resolved", "dispute_resolved", {"order_id": str(dispute.order_id), "resolution": dispute.resolution})
        self._invalidate(dispute)
        self.logger.info(
            f"Dispute {dispute.pk} closed as {dispute.status}"
            + (" (manual refund required)" if dispute.requires_manual_refund else "")
        )

    @BaseService.log_performance
    @BaseService.returns_result
    def update_dispute(self, user, dispute_id, additional_info: str) -> ServiceResult[Dispute]:
        """Append information from the buyer or seller to a PENDING dispute."""
        if not additional_info or not additional_info.strip():
            raise ValidationError("Additional information is required", errors=["additional_info: This field is required."])

        with transaction.atomic():
            dispute = Dispute.objects.select_for_update().select_related("order__store").filter(pk=dispute_id).first()
            if dispute is None:
                raise NotFoundError(f"Dispute {dispute_id} not found")
            self._require_party(dispute, user)
            if dispute.status != Dispute.PENDING:
                raise PreconditionFailed("Cannot update a dispute that has been resolved or cancelled")

            author = "Buyer" if user.pk == dispute.buyer_id else "Seller"
            dispute.description = f"{dispute.description}\n\n[UPDATE from {author}]: {additional_info.strip()}"
            dispute.save(update_fields=["description", "updated_at"])

            other = dispute.seller_id if author == "Buyer" else dispute.buyer_id
            self._notify(other, "Dispute Updated", f"New information was added to the dispute for order #{dispute.order_id}.", dispute)
            self._invalidate(dispute)
        return dispute

    @BaseService.log_performance
    @BaseService.returns_result
    def cancel_dispute(self, user, dispute_id, reason: str = "") -> ServiceResult[Dispute]:
        """Withdraw a PENDING dispute; the escrow becomes releasable again."""
        with transaction.atomic():
            dispute = Dispute.objects.select_for_update().select_related("order__store").filter(pk=dispute_id).first()
            if dispute is None:
                raise NotFoundError(f"Dispute {dispute_id} not found")
            self._require_party(dispute, user)
            if dispute.status != Dispute.PENDING:
                raise InvalidTransition("dispute", dispute.status, Dispute.CANCELLED)

            by_buyer = user.pk == dispute.buyer_id
            dispute.status = Dispute.CANCELLED
            dispute.resolution = (reason or "").strip() or f"Cancelled by {'buyer' if by_buyer else 'seller'}"
            dispute.resolved_at = timezone.now()
            dispute.save(update_fields=["status", "resolution", "resolved_at", "updated_at"])

            other = dispute.seller_id if by_buyer else dispute.buyer_id
            self._notify(other, "Dispute Cancelled", f"The dispute for order #{dispute.order_id} has been cancelled.", dispute)
            self._invalidate(dispute)
        return dispute

    @BaseService.log_performance
    @BaseService.returns_result
    def get_dispute_details(self, user, dispute_id) -> ServiceResult[Dispute]:
        dispute = self._get_dispute(dispute_id)
        if user.pk not in (dispute.buyer_id, dispute.seller_id) and not is_admin(user):
            raise AuthorizationError("You do not have permission to view this dispute")
        return dispute

    @BaseService.log_performance
    @BaseService.returns_result
    def list_user_disputes(
        self, user, status: Optional[str] = None, role: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict[str, Any]]:
        """Disputes the user opened (role='buyer'), received (role='seller'), or both."""
        if role == "buyer":
            queryset = Dispute.objects.filter(buyer=user)
        elif role == "seller":
            queryset = Dispute.objects.filter(seller=user)
        else:
            queryset = Dispute.objects.filter(buyer=user) | Dispute.objects.filter(seller=user)
        if status:
            queryset = queryset.filter(status=status)
        return paginate(queryset.select_related("order").order_by("-created_at"), page, page_size)

    @BaseService.log_performance
    @BaseService.returns_result
    def list_all_disputes(
        self, admin, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict[str, Any]]:
        require_admin(admin)
        queryset = Dispute.objects.select_related("order", "buyer", "seller").order_by("-created_at")
        if status:
            queryset = queryset.filter(status=status)
        return paginate(queryset, page, page_size)
