from marketplace.catalog.domain.models import Product, Store
from marketplace.ordering.domain.models import DeliveryInfo, Order, OrderItem, StatusChange


__all__ = [
    "Store",
    "Product",
    "Order",
    "OrderItem",
    "DeliveryInfo",
    "StatusChange",
]
