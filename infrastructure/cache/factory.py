"""
Cache Factory
=============
"""

import logging
from typing import Literal

from django.conf import settings

from .django_cache import DjangoCache
from .interface import CacheInterface
from .redis_cache import RedisCache

logger = logging.getLogger(__name__)

CacheBackend = Literal["redis", "django"]


class CacheFactory:
    @staticmethod
    def create(backend: CacheBackend | None = None) -> CacheInterface:
        """
        Create a cache client. Reads INFRASTRUCTURE['CACHE_BACKEND'] when backend is None.

        Raises:
            ValueError: If backend type is invalid
        """
        backend_type = backend or getattr(settings, "INFRASTRUCTURE", {}).get("CACHE_BACKEND", "redis")

        logger.info(f"Creating cache backend: {backend_type}")

        if backend_type == "redis":
            return RedisCache()
        elif backend_type == "django":
            return DjangoCache()
        else:
            raise ValueError(f"Invalid cache backend: {backend_type}. Must be 'redis' or 'django'")
