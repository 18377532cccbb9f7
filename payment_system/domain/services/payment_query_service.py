"""Read-side payment operations: details, checkout sessions, listing and gateway verification."""

from decimal import Decimal
from typing import Any, Dict, Optional

from infrastructure.payments import GatewayException, GatewayInterface, from_minor_units
from payment_system.domain.models import Payment
from utils.exceptions import AuthorizationError, ExternalServiceError, NotFoundError, ValidationError
from utils.rbac import is_admin, is_order_buyer, is_order_seller
from utils.service_base import BaseService, ServiceResult, paginate


class PaymentQueryService(BaseService):
    def __init__(self, gateway: GatewayInterface):
        super().__init__()
        self.gateway = gateway

    def _can_view(self, payment: Payment, user) -> bool:
        return is_order_buyer(payment.order, user) or is_order_seller(payment.order, user) or is_admin(user)

    @BaseService.log_performance
    @BaseService.returns_result
    def get_payment_details(self, user, payment_id) -> ServiceResult[Payment]:
        payment = Payment.objects.select_related("order__store").filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if not self._can_view(payment, user):
            raise AuthorizationError("You do not have permission to view this payment")
        return payment

    @BaseService.log_performance
    @BaseService.returns_result
    def get_payments_by_checkout_session(self, user, session_id: str) -> ServiceResult[Dict[str, Any]]:
        """All payments of one checkout session, with a summary."""
        payments = list(
            Payment.objects.select_related("order__store").filter(checkout_session=session_id).order_by("created_at")
        )
        if not payments:
            raise NotFoundError("Checkout session not found")
        if not is_admin(user) and any(p.buyer_id != user.pk for p in payments):
            raise AuthorizationError("You do not have permission to view this checkout session")

        return {
            "checkout_session": session_id,
            "payments": payments,
            "summary": {
                "count": len(payments),
                "total_amount": sum((p.amount for p in payments), Decimal("0.00")),
                "currency": payments[0].currency,
                "all_successful": all(p.status == Payment.SUCCESS for p in payments),
            },
        }

    @BaseService.log_performance
    @BaseService.returns_result
    def list_user_payments(
        self, user, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict[str, Any]]:
        queryset = Payment.objects.select_related("order").filter(buyer=user).order_by("-created_at")
        if status:
            if status not in dict(Payment.STATUS_CHOICES):
                raise ValidationError(f"Unknown payment status: {status}")
            queryset = queryset.filter(status=status)
        return paginate(queryset, page, page_size)

    @BaseService.log_performance
    @BaseService.returns_result
    def verify_payment(self, user, reference: str) -> ServiceResult[Dict[str, Any]]:
        """
        Ask the gateway for the charge status of ``reference``.

        Read-only: settlement happens only through the webhook.
        """
        payments = list(Payment.objects.select_related("order__store").filter(reference=reference))
        if not payments:
            raise NotFoundError("Payment reference not found")
        if not any(self._can_view(p, user) for p in payments):
            raise AuthorizationError("You do not have permission to verify this payment")

        try:
            verification = self.gateway.verify_charge(reference)
        except GatewayException as e:
            self.logger.error(f"Gateway verification failed for {reference}: {e}")
            raise ExternalServiceError(detail=str(e))

        return {
            "reference": reference,
            "gateway_status": verification.status,
            "amount": from_minor_units(verification.amount_minor),
            "currency": verification.currency,
            "payments": [{"id": str(p.pk), "order_id": str(p.order_id), "status": p.status} for p in payments],
        }
