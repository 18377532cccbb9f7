"""
Declarative cache invalidation.

Every mutation of an entity invalidates the keys derived from that entity's
id and its owning user/store. Services collect keys for one business
operation into a ``CacheInvalidator`` and flush them once, after commit.
"""

import logging
from typing import Dict, List, Set

from utils.side_effects import run_after_commit

from .interface import CacheInterface

logger = logging.getLogger(__name__)

# Key templates, shared by readers (views) and the invalidator.
ORDER_DETAIL_KEY = "order:{order_id}:user:{user_id}"
BUYER_ORDERS_KEY = "user:{buyer_id}:orders"
STORE_ORDERS_KEY = "store:{store_id}:orders"
CHECKOUT_KEY = "checkout:{session_id}:user:{buyer_id}"
PRODUCT_KEY = "product:url:{product_id}"
STORE_KEY = "store:slug:{store_slug}"
ORDER_ESCROW_KEY = "order:{order_id}:escrow"
DISPUTE_KEY = "dispute:{dispute_id}"
USER_DISPUTES_KEY = "user:{user_id}:disputes"

INVALIDATION_RULES: Dict[str, List[str]] = {
    "order": [
        "order:{order_id}:user:{buyer_id}",
        "order:{order_id}:user:{seller_id}",
        BUYER_ORDERS_KEY,
        STORE_ORDERS_KEY,
        ORDER_ESCROW_KEY,
    ],
    "checkout": [CHECKOUT_KEY],
    "product": [PRODUCT_KEY],
    "store": [STORE_KEY],
    "dispute": [
        DISPUTE_KEY,
        "user:{buyer_id}:disputes",
        "user:{seller_id}:disputes",
    ],
}


def keys_for(entity: str, **ids) -> List[str]:
    """Expand the rule for ``entity``; templates with missing ids are skipped."""
    keys = []
    for template in INVALIDATION_RULES[entity]:
        try:
            keys.append(template.format(**ids))
        except KeyError:
            continue
    return keys


class CacheInvalidator:
    """
    Collects keys for one business operation and deletes them once after commit.

    Usage:
        invalidator = CacheInvalidator(container.cache())
        invalidator.add_order(order)
        invalidator.flush_on_commit()
    """

    def __init__(self, cache: CacheInterface):
        self.cache = cache
        self.keys: Set[str] = set()

    def add(self, entity: str, **ids) -> "CacheInvalidator":
        self.keys.update(keys_for(entity, **ids))
        return self

    def add_order(self, order, include_items: bool = False) -> "CacheInvalidator":
        """Order keys, its checkout session, and (optionally) its products and store."""
        store = order.store
        self.add(
            "order",
            order_id=order.pk,
            buyer_id=order.buyer_id,
            seller_id=store.owner_id,
            store_id=order.store_id,
        )
        if order.checkout_session:
            self.add("checkout", session_id=order.checkout_session, buyer_id=order.buyer_id)
        if include_items:
            for item in order.items.all():
                self.add("product", product_id=item.product_id)
            self.add("store", store_slug=store.slug)
        return self

    def add_dispute(self, dispute) -> "CacheInvalidator":
        return self.add(
            "dispute",
            dispute_id=dispute.pk,
            buyer_id=dispute.buyer_id,
            seller_id=dispute.seller_id,
        )

    def flush(self) -> int:
        if not self.keys:
            return 0
        keys = sorted(self.keys)
        self.keys = set()
        removed = self.cache.delete(*keys)
        logger.debug(f"Invalidated {removed}/{len(keys)} cache keys")
        return removed

    def flush_on_commit(self) -> None:
        run_after_commit(self.flush, description="cache invalidation")
