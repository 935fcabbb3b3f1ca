"""Short-lived cache for expensive window-manager queries.

Building the tty → window map walks every window and its child
processes; the monitor refreshes several times a second, so the map is
kept for a short TTL and rebuilt early whenever the number of tracked
sessions changes (a new session usually means a new terminal window).
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheEntry(Generic[T]):
    """Cached value with its creation time and the key it was built for.

    Attributes:
        value: The cached value
        cached_at: Monotonic time the value was stored
        key: Invalidation key (e.g. tracked session count)
    """

    def __init__(self, value: T, key: object = None):
        self.value = value
        self.key = key
        self.cached_at = time.monotonic()

    @property
    def age(self) -> float:
        """Entry age in seconds."""
        return time.monotonic() - self.cached_at


class TTLCache(Generic[T]):
    """Single-value cache with a TTL and a key that forces early refresh.

    Example:
        >>> cache = TTLCache(ttl=1.0)
        >>> ttys = await cache.get(backend.tty_window_map, key=len(sessions))
    """

    def __init__(self, ttl: float = 1.0):
        """Initialize the cache.

        Args:
            ttl: Time-to-live in seconds
        """
        self.ttl = ttl
        self._entry: Optional[CacheEntry[T]] = None
        self._hits = 0
        self._misses = 0

    def is_fresh(self, key: object = None) -> bool:
        return (
            self._entry is not None
            and self._entry.key == key
            and self._entry.age < self.ttl
        )

    async def get(self, loader: Callable[[], Awaitable[T]], key: object = None) -> T:
        """Return the cached value, calling loader when stale or key changed."""
        if self.is_fresh(key):
            self._hits += 1
            return self._entry.value

        self._misses += 1
        value = await loader()
        self._entry = CacheEntry(value, key=key)
        logger.debug(f"Cache refreshed (key={key!r}, hits={self._hits}, misses={self._misses})")
        return value

    def invalidate(self, reason: str = "manual") -> None:
        if self._entry is not None:
            logger.debug(f"Cache invalidated (reason: {reason}, age: {self._entry.age:.2f}s)")
            self._entry = None

    def get_stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "cache_hits": self._hits,
            "cache_misses": self._misses,
            "hit_rate_pct": round(self._hits / total * 100, 2) if total else 0.0,
            "is_cached": self._entry is not None,
            "ttl_sec": self.ttl,
        }
