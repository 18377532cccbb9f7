from rest_framework import serializers

from marketplace.ordering.domain.models.order import DeliveryInfo, Order, OrderItem, StatusChange


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product",
            "product_name",
            "quantity",
            "unit_price",
            "total_price",
        ]
        read_only_fields = fields


class DeliveryInfoSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryInfo
        fields = [
            "recipient_name",
            "phone",
            "address",
            "city",
            "region",
            "notes",
            "courier_service",
            "driver_name",
            "driver_phone",
            "driver_vehicle_number",
            "tracking_number",
            "courier_assigned_at",
            "status_updated_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    delivery = serializers.SerializerMethodField()
    buyer_name = serializers.CharField(source="buyer.display_name", read_only=True)
    store_name = serializers.CharField(source="store.name", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "buyer",
            "buyer_name",
            "store",
            "store_name",
            "status",
            "payment_status",
            "subtotal",
            "delivery_fee",
            "tax_amount",
            "discount_amount",
            "total_amount",
            "currency",
            "checkout_session",
            "buyer_notes",
            "items",
            "delivery",
            "cancellation_reason",
            "cancelled_at",
            "refund_amount",
            "refund_reason",
            "delivered_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_delivery(self, obj):
        delivery = DeliveryInfo.objects.filter(order=obj).first()
        if delivery is None:
            return None
        return DeliveryInfoSerializer(delivery).data


class StatusChangeSerializer(serializers.ModelSerializer):
    changed_by_name = serializers.SerializerMethodField()

    class Meta:
        model = StatusChange
        fields = ["id", "old_status", "new_status", "changed_by", "changed_by_name", "reason", "created_at"]
        read_only_fields = fields

    def get_changed_by_name(self, obj):
        return obj.changed_by.display_name if obj.changed_by else "system"


# ===== Request serializers =====


class OrderItemRequestSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class DeliveryInfoRequestSerializer(serializers.Serializer):
    recipient_name = serializers.CharField(max_length=200)
    phone = serializers.CharField(max_length=30)
    address = serializers.CharField(max_length=300)
    city = serializers.CharField(max_length=100)
    region = serializers.CharField(max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class CreateOrderRequestSerializer(serializers.Serializer):
    store_id = serializers.UUIDField(help_text="Store every item belongs to")
    items = OrderItemRequestSerializer(many=True, allow_empty=False)
    delivery_info = DeliveryInfoRequestSerializer()
    delivery_fee = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    tax_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    currency = serializers.CharField(max_length=3, required=False)
    total_amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, help_text="Optional; rejected when it disagrees with the items"
    )
    buyer_notes = serializers.CharField(required=False, allow_blank=True, default="")


class UpdateOrderStatusRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class CancelOrderRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class AssignCourierRequestSerializer(serializers.Serializer):
    courier_service = serializers.CharField(max_length=100)
    driver_name = serializers.CharField(max_length=100)
    driver_phone = serializers.CharField(max_length=30, required=False, allow_blank=True, default="")
    driver_vehicle_number = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")


class DeliveryStatusRequestSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[Order.OUT_FOR_DELIVERY, Order.DELIVERED])


class OrderListResponseSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    num_pages = serializers.IntegerField()
    results = OrderSerializer(many=True)
