from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import Dispute, Escrow, Payment, PayoutAccount

STATUS_COLORS = {
    "PENDING": "orange",
    "PROCESSING": "purple",
    "SUCCESS": "green",
    "RELEASED": "green",
    "RESOLVED": "green",
    "FAILED": "red",
    "REFUNDED": "blue",
    "CANCELLED": "gray",
}


def _status_badge(value, label):
    color = STATUS_COLORS.get(value, "black")
    return format_html('<span style="color: {}; font-weight: bold;">{}</span>', color, label)


def _order_link(order_id):
    url = reverse("admin:marketplace_order_change", args=[order_id])
    return format_html('<a href="{}">{}</a>', url, str(order_id)[:8])


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ["id_short", "reference", "order_link", "buyer", "status_badge", "amount_display", "created_at"]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["reference", "checkout_session", "order__id", "buyer__username", "buyer__email"]
    readonly_fields = ["id", "reference", "checkout_session", "metadata", "created_at", "updated_at", "paid_at"]

    def id_short(self, obj):
        return str(obj.id)[:8] + "..."

    id_short.short_description = "ID"

    def order_link(self, obj):
        return _order_link(obj.order_id)

    order_link.short_description = "Order"

    def status_badge(self, obj):
        return _status_badge(obj.status, obj.get_status_display())

    status_badge.short_description = "Status"

    def amount_display(self, obj):
        return f"{obj.amount:.2f} {obj.currency}"

    amount_display.short_description = "Amount"


@admin.register(Escrow)
class EscrowAdmin(admin.ModelAdmin):
    """Escrow state is driven by the release and refund paths; the admin is read-mostly."""

    list_display = ["id", "order_link", "amount_held", "currency", "status_badge", "release_date", "released_to"]
    list_filter = ["release_status", "released_to", "currency"]
    search_fields = ["order__id", "transfer_reference", "refund_reference"]
    readonly_fields = [
        "id",
        "order",
        "payment",
        "amount_held",
        "currency",
        "release_status",
        "released_at",
        "released_to",
        "transfer_reference",
        "refund_reference",
        "created_at",
        "updated_at",
    ]

    def order_link(self, obj):
        return _order_link(obj.order_id)

    order_link.short_description = "Order"

    def status_badge(self, obj):
        return _status_badge(obj.release_status, obj.get_release_status_display())

    status_badge.short_description = "Status"


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ["id", "order_link", "dispute_type", "status_badge", "requires_manual_refund", "created_at"]
    list_filter = ["status", "dispute_type", "requires_manual_refund"]
    search_fields = ["order__id", "buyer__email", "seller__email", "description"]
    readonly_fields = ["id", "order", "payment", "buyer", "seller", "resolved_at", "resolved_by", "created_at", "updated_at"]

    def order_link(self, obj):
        return _order_link(obj.order_id)

    order_link.short_description = "Order"

    def status_badge(self, obj):
        return _status_badge(obj.status, obj.get_status_display())

    status_badge.short_description = "Status"


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ["store", "bank_name", "account_name", "account_number_masked", "is_active", "updated_at"]
    list_filter = ["is_active", "bank_name"]
    search_fields = ["store__name", "account_name"]
