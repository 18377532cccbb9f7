"""
Redis Cache
===========

redis-py backed CacheInterface. The client handle is created by connect()
and released by disconnect(); it is owned by the service container, never by
module-level state.
"""

import json
import logging
from typing import Any, Optional

import redis
from django.conf import settings

from .interface import CacheInterface

logger = logging.getLogger(__name__)


class RedisCache(CacheInterface):
    """
    Redis cache implementation.

    Configuration (in settings.py):
        REDIS_CACHE_URL: Connection URL
        CACHE_DEFAULT_TTL: Default TTL in seconds
    """

    def __init__(self, url: Optional[str] = None, default_ttl: Optional[int] = None):
        self.url = url or getattr(settings, "REDIS_CACHE_URL", "redis://localhost:6379/1")
        self.default_ttl = default_ttl or getattr(settings, "CACHE_DEFAULT_TTL", 300)
        self.client: Optional[redis.Redis] = None

    def connect(self) -> None:
        if self.client is not None:
            return
        self.client = redis.from_url(self.url, socket_timeout=2, socket_connect_timeout=2)
        logger.info("Redis cache client connected")

    def disconnect(self) -> None:
        if self.client is None:
            return
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis cache client: {e}")
        finally:
            self.client = None
        logger.info("Redis cache client disconnected")

    def _client(self) -> Optional[redis.Redis]:
        if self.client is None:
            self.connect()
        return self.client

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client().get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            self._client().set(key, json.dumps(value, default=str), ex=ttl_seconds or self.default_ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self._client().delete(*keys))
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for {list(keys)}: {e}")
            return 0
