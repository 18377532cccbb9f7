from rest_framework import serializers

from payment_system.models import Dispute, Escrow, Payment, PayoutAccount


class PaymentSerializer(serializers.ModelSerializer):
    order_status = serializers.CharField(source="order.status", read_only=True)
    store_id = serializers.UUIDField(source="order.store_id", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "order",
            "order_status",
            "store_id",
            "buyer",
            "amount",
            "currency",
            "reference",
            "checkout_session",
            "status",
            "gateway_status",
            "created_at",
            "updated_at",
            "paid_at",
        ]
        read_only_fields = fields


class EscrowSerializer(serializers.ModelSerializer):
    order_status = serializers.CharField(source="order.status", read_only=True)
    store_id = serializers.UUIDField(source="order.store_id", read_only=True)

    class Meta:
        model = Escrow
        fields = [
            "id",
            "order",
            "order_status",
            "store_id",
            "payment",
            "amount_held",
            "currency",
            "release_date",
            "release_status",
            "released_at",
            "released_to",
            "release_reason",
            "transfer_reference",
            "refund_reference",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DisputeSerializer(serializers.ModelSerializer):
    buyer_name = serializers.CharField(source="buyer.display_name", read_only=True)
    seller_name = serializers.CharField(source="seller.display_name", read_only=True)

    class Meta:
        model = Dispute
        fields = [
            "id",
            "order",
            "payment",
            "buyer",
            "buyer_name",
            "seller",
            "seller_name",
            "dispute_type",
            "description",
            "status",
            "resolution",
            "resolved_at",
            "resolved_by",
            "refund_amount",
            "requires_manual_refund",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PayoutAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutAccount
        fields = [
            "store",
            "bank_name",
            "account_name",
            "account_number_masked",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
