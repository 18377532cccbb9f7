from django.contrib import admin

from .models import DeliveryInfo, Order, OrderItem, Product, StatusChange, Store


class ProductInline(admin.TabularInline):
    model = Product
    extra = 0
    fields = ("name", "price", "stock_quantity", "quantity_sold", "is_active")
    readonly_fields = ("quantity_sold",)


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "is_active", "created_at")
    list_filter = ("is_active", "created_at")
    search_fields = ("name", "owner__username", "owner__email")
    prepopulated_fields = {"slug": ("name",)}
    inlines = [ProductInline]


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "store", "price", "stock_quantity", "quantity_sold", "is_active")
    list_filter = ("is_active", "store")
    search_fields = ("name", "description", "store__name")
    readonly_fields = ("quantity_sold", "created_at", "updated_at")


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "product_name", "quantity", "unit_price", "total_price")


class DeliveryInfoInline(admin.StackedInline):
    model = DeliveryInfo
    extra = 0


class StatusChangeInline(admin.TabularInline):
    """Status history is append-only."""

    model = StatusChange
    extra = 0
    can_delete = False
    readonly_fields = ("old_status", "new_status", "changed_by", "reason", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "buyer", "store", "status", "payment_status", "total_amount", "currency", "created_at")
    list_filter = ("status", "payment_status", "currency", "created_at")
    search_fields = ("id", "buyer__username", "buyer__email", "store__name", "checkout_session")
    # Status fields only move through the order services
    readonly_fields = (
        "status",
        "payment_status",
        "subtotal",
        "total_amount",
        "checkout_session",
        "created_at",
        "updated_at",
        "delivered_at",
        "cancelled_at",
    )
    inlines = [OrderItemInline, DeliveryInfoInline, StatusChangeInline]
