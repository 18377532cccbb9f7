from .order import DeliveryInfo, Order, OrderItem, StatusChange, StatusChangeError


__all__ = [
    "Order",
    "OrderItem",
    "DeliveryInfo",
    "StatusChange",
    "StatusChangeError",
]
