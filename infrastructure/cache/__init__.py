"""
Cache Abstraction Layer
=======================
"""

from .django_cache import DjangoCache
from .factory import CacheFactory
from .interface import CacheInterface
from .invalidation import INVALIDATION_RULES, CacheInvalidator, keys_for
from .redis_cache import RedisCache

__all__ = [
    "CacheInterface",
    "RedisCache",
    "DjangoCache",
    "CacheFactory",
    "CacheInvalidator",
    "INVALIDATION_RULES",
    "keys_for",
]
