from rest_framework import serializers

from payment_system.models import Dispute


class CheckoutRequestSerializer(serializers.Serializer):
    order_ids = serializers.ListField(
        child=serializers.UUIDField(), allow_empty=False, help_text="Orders to pay for in one gateway charge"
    )
    email = serializers.EmailField(required=False, help_text="Payer email, defaults to the account email")
    callback_url = serializers.URLField(required=False, help_text="Where the gateway redirects after payment")


class OpenDisputeRequestSerializer(serializers.Serializer):
    dispute_type = serializers.ChoiceField(choices=Dispute.TYPE_CHOICES, default="REFUND_REQUEST")
    description = serializers.CharField(help_text="What went wrong with the order")


class UpdateDisputeRequestSerializer(serializers.Serializer):
    additional_info = serializers.CharField(help_text="Information appended to the dispute description")


class ResolveDisputeRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[Dispute.RESOLVED, Dispute.CANCELLED])
    resolution = serializers.CharField()
    refund_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    refund_buyer = serializers.BooleanField(
        default=True, help_text="False resolves in the seller's favour and leaves the escrow untouched"
    )


class CancelDisputeRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ResetEscrowRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(help_text="Why the failed release may be retried")


class PayoutAccountRequestSerializer(serializers.Serializer):
    recipient_code = serializers.CharField(max_length=100, help_text="Gateway transfer recipient code")
    bank_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    account_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    account_number = serializers.CharField(max_length=30, required=False, allow_blank=True, default="")
    is_active = serializers.BooleanField(default=True)
