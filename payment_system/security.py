"""
Security and audit logging for payment processing
"""

import logging

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Get real client IP address"""
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR")


class PaymentAuditLogger:
    """Structured audit logging for payment operations"""

    @staticmethod
    def log_checkout(user_id, checkout_session, reference, amount, order_count):
        logger.info(
            "Checkout session opened",
            extra={
                "user_id": str(user_id),
                "checkout_session": checkout_session,
                "reference": reference,
                "amount": str(amount),
                "order_count": order_count,
                "event_type": "checkout_opened",
            },
        )

    @staticmethod
    def log_payment_success(payment_id, order_id, amount, reference):
        """Log successful payment"""
        logger.info(
            "Payment successful",
            extra={
                "payment_id": str(payment_id),
                "order_id": str(order_id),
                "amount": str(amount),
                "reference": reference,
                "event_type": "payment_success",
            },
        )

    @staticmethod
    def log_payment_failure(payment_id, order_id, reference, gateway_status=None):
        """Log failed payment"""
        logger.warning(
            "Payment failed",
            extra={
                "payment_id": str(payment_id),
                "order_id": str(order_id),
                "reference": reference,
                "gateway_status": gateway_status,
                "event_type": "payment_failure",
            },
        )

    @staticmethod
    def log_amount_mismatch(reference, expected, received):
        logger.error(
            f"Amount mismatch for reference {reference}",
            extra={
                "reference": reference,
                "expected": str(expected),
                "received": str(received),
                "event_type": "amount_mismatch",
            },
        )

    @staticmethod
    def log_escrow_release(escrow_id, order_id, amount, trigger, outcome, reason=""):
        log = logger.info if outcome == "released" else logger.warning
        log(
            f"Escrow release {outcome}",
            extra={
                "escrow_id": str(escrow_id),
                "order_id": str(order_id),
                "amount": str(amount),
                "trigger": trigger,
                "outcome": outcome,
                "reason": reason,
                "event_type": "escrow_release",
            },
        )

    @staticmethod
    def log_refund(escrow_id, order_id, amount, outcome, reason=""):
        log = logger.info if outcome == "refunded" else logger.warning
        log(
            f"Escrow refund {outcome}",
            extra={
                "escrow_id": str(escrow_id),
                "order_id": str(order_id),
                "amount": str(amount),
                "outcome": outcome,
                "reason": reason,
                "event_type": "escrow_refund",
            },
        )

    @staticmethod
    def log_security_event(event_type, ip_address, user_id=None, details=None):
        """Log security-related events"""
        logger.warning(
            f"Security event: {event_type}",
            extra={
                "event_type": f"security_{event_type}",
                "ip_address": ip_address,
                "user_id": user_id,
                "details": details,
            },
        )
