"""Stock reservation and restoration for order line items."""

import logging
from typing import Dict, Iterable

from django.db.models import F

from marketplace.catalog.domain.models import Product
from utils.exceptions import PreconditionFailed

logger = logging.getLogger(__name__)


def reserve_stock(products: Dict, quantities: Dict) -> None:
    """
    Decrement stock and increment quantity sold for locked products.

    Args:
        products: product id -> Product locked with select_for_update
        quantities: product id -> requested quantity
    """
    shortages = []
    for product_id, quantity in quantities.items():
        product = products[product_id]
        if product.stock_quantity < quantity:
            shortages.append(f"Insufficient stock for {product.name}: requested {quantity}, available {product.stock_quantity}")
    if shortages:
        raise PreconditionFailed("Insufficient stock", errors=shortages)

    for product_id, quantity in quantities.items():
        Product.objects.filter(pk=product_id).update(
            stock_quantity=F("stock_quantity") - quantity,
            quantity_sold=F("quantity_sold") + quantity,
        )


def restore_stock(items: Iterable) -> None:
    """Return each line item's quantity to stock and reverse quantity sold."""
    for item in items:
        updated = Product.objects.filter(pk=item.product_id, quantity_sold__gte=item.quantity).update(
            stock_quantity=F("stock_quantity") + item.quantity,
            quantity_sold=F("quantity_sold") - item.quantity,
        )
        if not updated:
            # quantity_sold drifted (manual edit); restore stock only
            logger.warning(f"quantity_sold below {item.quantity} for product {item.product_id}; restoring stock only")
            Product.objects.filter(pk=item.product_id).update(stock_quantity=F("stock_quantity") + item.quantity)
