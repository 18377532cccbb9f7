"""
Cache Infrastructure Tests
==========================
"""

import json
from unittest.mock import MagicMock, patch

import redis
from django.test import TestCase

from infrastructure.cache import CacheFactory, CacheInvalidator, DjangoCache, RedisCache, keys_for
from infrastructure.cache.invalidation import ORDER_DETAIL_KEY
from marketplace.tests.factories import DisputeFactory, OrderFactory


class KeysForTest(TestCase):
    def test_order_keys(self):
        keys = keys_for("order", order_id=1, buyer_id="b", seller_id="s", store_id=9)

        self.assertEqual(
            keys,
            ["order:1:user:b", "order:1:user:s", "user:b:orders", "store:9:orders", "order:1:escrow"],
        )

    def test_missing_ids_skip_template(self):
        self.assertEqual(keys_for("order", order_id=1), ["order:1:escrow"])


class CacheInvalidatorTest(TestCase):
    def setUp(self):
        self.cache = DjangoCache()

    def test_order_invalidation_removes_detail_views(self):
        order = OrderFactory(checkout_session="cs_test_x")
        buyer_key = ORDER_DETAIL_KEY.format(order_id=order.pk, user_id=order.buyer_id)
        seller_key = ORDER_DETAIL_KEY.format(order_id=order.pk, user_id=order.store.owner_id)
        self.cache.set(buyer_key, {"id": str(order.pk)})
        self.cache.set(seller_key, {"id": str(order.pk)})
        self.cache.set("unrelated", 1)

        invalidator = CacheInvalidator(self.cache).add_order(order)
        self.assertIn(f"checkout:cs_test_x:user:{order.buyer_id}", invalidator.keys)

        removed = invalidator.flush()

        self.assertEqual(removed, 2)
        self.assertIsNone(self.cache.get(buyer_key))
        self.assertEqual(self.cache.get("unrelated"), 1)
        self.assertEqual(invalidator.keys, set())

    def test_flush_waits_for_commit(self):
        dispute = DisputeFactory()
        key = f"dispute:{dispute.pk}"
        self.cache.set(key, "cached")

        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            CacheInvalidator(self.cache).add_dispute(dispute).flush_on_commit()
            self.assertEqual(self.cache.get(key), "cached")

        self.assertEqual(len(callbacks), 1)
        callbacks[0]()
        self.assertIsNone(self.cache.get(key))

    def test_empty_flush(self):
        self.assertEqual(CacheInvalidator(self.cache).flush(), 0)


class RedisCacheTest(TestCase):
    def setUp(self):
        self.client = MagicMock()
        patcher = patch("infrastructure.cache.redis_cache.redis.from_url", return_value=self.client)
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.cache = RedisCache(url="redis://cache:6379/1", default_ttl=60)

    def test_values_are_json_encoded(self):
        self.assertTrue(self.cache.set("k", {"amount": "10.00"}))
        self.client.set.assert_called_once_with("k", json.dumps({"amount": "10.00"}), ex=60)

        self.client.get.return_value = b'{"amount": "10.00"}'
        self.assertEqual(self.cache.get("k"), {"amount": "10.00"})
        self.from_url.assert_called_once()

    def test_outage_degrades_to_miss(self):
        self.client.get.side_effect = redis.ConnectionError("down")
        self.client.set.side_effect = redis.ConnectionError("down")
        self.client.delete.side_effect = redis.ConnectionError("down")

        self.assertIsNone(self.cache.get("k"))
        self.assertFalse(self.cache.set("k", 1))
        self.assertEqual(self.cache.delete("k"), 0)

    def test_undecodable_entry_is_a_miss(self):
        self.client.get.return_value = b"not json"
        self.assertIsNone(self.cache.get("k"))

    def test_disconnect_releases_client(self):
        self.cache.connect()
        self.cache.disconnect()

        self.client.close.assert_called_once()
        self.assertIsNone(self.cache.client)


class CacheFactoryTest(TestCase):
    def test_create_django(self):
        self.assertIsInstance(CacheFactory.create("django"), DjangoCache)

    def test_create_invalid_backend(self):
        with self.assertRaises(ValueError):
            CacheFactory.create("memcached")
