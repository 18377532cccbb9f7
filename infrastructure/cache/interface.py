"""
Cache Interface
===============

Best-effort key/value cache. The cache is never authoritative: every
implementation must swallow backend outages and behave as a miss.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional


class CacheInterface(ABC):
    """
    Abstract interface for cache operations.

    Concrete implementations:
        - RedisCache: redis-py client with explicit connect/disconnect
        - DjangoCache: wraps a configured Django cache alias (locmem in tests)
    """

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or outage."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store a JSON-serializable value. Returns False on outage."""
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys, returning how many were removed (0 on outage)."""
        pass

    def delete_many(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        return self.delete(*keys) if keys else 0
