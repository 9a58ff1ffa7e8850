"""ResultCache: TTL-bounded cache for aggregated prices.

One slot per asset symbol. The cache is created once at startup, injected into
the PriceAggregator, and read/written on every request. Staleness is bounded
purely by the TTL; there is no other invalidation.

No locking is needed: each slot is replaced as a single (value, expiry) tuple,
and two concurrent cycles overwriting the same slot produce equivalent results.
"""

from __future__ import annotations

import logging
import time
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResultCache(Generic[T]):
    """Keyed cache where every entry expires ttl_seconds after being set.

    :ivar ttl_seconds: Lifetime of an entry in seconds.
    :ivar hits: Number of lookups that returned a fresh entry.
    :ivar misses: Number of lookups that found nothing or a stale entry.
    """

    def __init__(self, ttl_seconds: float = 30.0) -> None:
        """Initialize an empty cache.

        :param ttl_seconds: Entry lifetime in seconds.
        :raises ValueError: If ttl_seconds is not positive.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.hits = 0
        self.misses = 0
        self._entries: dict[str, tuple[T, float]] = {}

    def get(self, key: str) -> T | None:
        """Return the cached value if present and fresh.

        A miss is a normal outcome and returns None. Stale entries are evicted.

        :param key: Cache key (the asset symbol).
        :returns: Cached value, or None on a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            logger.debug(f"Cache miss: {key}")
            return None

        value, expires_at = entry
        if time.time() > expires_at:
            self._entries.pop(key, None)
            self.misses += 1
            logger.debug(f"Cache expired: {key}")
            return None

        self.hits += 1
        logger.debug(f"Cache hit: {key}")
        return value

    def set(self, key: str, value: T) -> None:
        """Store a value, overwriting any previous entry and resetting expiry.

        :param key: Cache key (the asset symbol).
        :param value: Value to store.
        """
        self._entries[key] = (value, time.time() + self.ttl_seconds)
        logger.debug(f"Cache set: {key} (ttl={self.ttl_seconds}s)")

    def delete(self, key: str) -> bool:
        """Remove an entry.

        :param key: Cache key.
        :returns: True if an entry was removed.
        """
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        logger.info("Cache flushed")

    def stats(self) -> dict[str, int]:
        """Return hit/miss counters and the number of stored keys."""
        return {"hits": self.hits, "misses": self.misses, "keys": len(self._entries)}
