from rest_framework import serializers

from .payment_serializers import DisputeSerializer, EscrowSerializer, PaymentSerializer


class ErrorResponseSerializer(serializers.Serializer):
    error = serializers.CharField(help_text="Error code")
    detail = serializers.CharField(help_text="Human readable message")
    errors = serializers.ListField(child=serializers.CharField(), required=False)


# ==============================================================================
# Payment Flow Responses
# ==============================================================================


class CheckoutSessionResponseSerializer(serializers.Serializer):
    """Response for creating a checkout session"""

    checkout_session_id = serializers.CharField()
    authorization_url = serializers.CharField(help_text="Gateway page the buyer is redirected to")
    reference = serializers.CharField(help_text="Gateway charge reference shared by every order of the session")
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    order_ids = serializers.ListField(child=serializers.CharField())
    payment_ids = serializers.ListField(child=serializers.CharField())
    order_count = serializers.IntegerField()


class WebhookResponseSerializer(serializers.Serializer):
    received = serializers.BooleanField()
    event = serializers.CharField(required=False)
    outcome = serializers.CharField(required=False)


class CheckoutSessionSummarySerializer(serializers.Serializer):
    count = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    all_successful = serializers.BooleanField()


class CheckoutSessionPaymentsResponseSerializer(serializers.Serializer):
    checkout_session = serializers.CharField()
    payments = PaymentSerializer(many=True)
    summary = CheckoutSessionSummarySerializer()


class VerifyPaymentResponseSerializer(serializers.Serializer):
    reference = serializers.CharField()
    gateway_status = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    payments = serializers.ListField(child=serializers.DictField())


class PaginatedResponseSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    num_pages = serializers.IntegerField()


class PaymentListResponseSerializer(PaginatedResponseSerializer):
    results = PaymentSerializer(many=True)


# ==============================================================================
# Escrow Responses
# ==============================================================================


class ReleaseOutcomeResponseSerializer(serializers.Serializer):
    escrow_id = serializers.CharField()
    order_id = serializers.CharField()
    status = serializers.ChoiceField(choices=["released", "failed", "skipped"])
    reason = serializers.CharField(allow_blank=True)
    transfer_reference = serializers.CharField(allow_blank=True)


class OrderEscrowStatusResponseSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    order_status = serializers.CharField()
    payment_status = serializers.CharField()
    escrow = serializers.DictField(allow_null=True)
    has_open_dispute = serializers.BooleanField()
    can_confirm_receipt = serializers.BooleanField()


class EscrowListResponseSerializer(PaginatedResponseSerializer):
    results = EscrowSerializer(many=True)


# ==============================================================================
# Dispute Responses
# ==============================================================================


class DisputeListResponseSerializer(PaginatedResponseSerializer):
    results = DisputeSerializer(many=True)
