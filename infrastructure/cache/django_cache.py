"""
Django Cache
============

CacheInterface over a configured Django cache alias.
"""

import logging
from typing import Any, Optional

from django.conf import settings
from django.core.cache import caches

from .interface import CacheInterface

logger = logging.getLogger(__name__)


class DjangoCache(CacheInterface):
    def __init__(self, alias: str = "default", default_ttl: Optional[int] = None):
        self.alias = alias
        self.default_ttl = default_ttl or getattr(settings, "CACHE_DEFAULT_TTL", 300)

    @property
    def backend(self):
        return caches[self.alias]

    def connect(self) -> None:
        # Django manages its own connections
        pass

    def disconnect(self) -> None:
        self.backend.close()

    def get(self, key: str) -> Optional[Any]:
        try:
            return self.backend.get(key)
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            self.backend.set(key, value, timeout=ttl_seconds or self.default_ttl)
            return True
        except Exception as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            try:
                removed += int(bool(self.backend.delete(key)))
            except Exception as e:
                logger.warning(f"Cache delete failed for {key}: {e}")
        return removed
