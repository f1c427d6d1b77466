"""
Bounded In-Memory LRU Store with TTL Support.

One store type backs every evictable structure in the relay:
    - Language detection results (1000 entries, no TTL)
    - Permission decisions (per user, 60s TTL)
    - Rate-limit windows (1000 users, no TTL; eviction resets a user)

Features:
    - LRU eviction when capacity is reached
    - TTL expiration checked on access
    - Thread-safe operations
    - Statistics (hits, misses, expirations, evictions)
    - Injectable clock for deterministic tests

Example:
    >>> from tts_relay.tts.cache import TinyLRUCache
    >>>
    >>> cache = TinyLRUCache(max_items=100, ttl_seconds=60)
    >>> cache.set("user-1", {"allowed": True, "reason": "whitelisted"})
    >>> cache.get("user-1")
    {'allowed': True, 'reason': 'whitelisted'}
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

from tts_relay.core.logging import get_logger, debug

_LOG = get_logger("tts-relay.cache")

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    created_at: float


class TinyLRUCache(Generic[V]):
    """
    Thread-safe LRU store with optional TTL.

    Attributes:
        name: Label used in logs and stats.
        max_items: Maximum number of entries.
        ttl_seconds: Entry lifetime in seconds (0 = no TTL).
    """

    def __init__(
        self,
        max_items: int,
        ttl_seconds: float = 0,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.max_items = int(max_items)
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock

        # OrderedDict keeps LRU order: oldest first
        self._d: "OrderedDict[str, _Entry[V]]" = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0

    def _expired(self, entry: _Entry[V], now: float) -> bool:
        return self.ttl_seconds > 0 and (now - entry.created_at) > self.ttl_seconds

    def get(self, key: str) -> Optional[V]:
        """
        Get a value, refreshing its LRU position.

        Expired entries are removed and reported as a miss.
        """
        with self._lock:
            entry = self._d.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._expired(entry, self._clock()):
                del self._d[key]
                self._expirations += 1
                self._misses += 1
                debug(_LOG, "expired", cache=self.name, key=key[:16])
                return None

            self._d.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        """Store a value, evicting the least recently used entries over capacity."""
        with self._lock:
            self._d[key] = _Entry(value=value, created_at=self._clock())
            self._d.move_to_end(key)

            while len(self._d) > self.max_items:
                evicted, _ = self._d.popitem(last=False)
                self._evictions += 1
                debug(_LOG, "evicted", cache=self.name, key=evicted[:16])

    def delete(self, key: str) -> bool:
        """Delete an entry. Returns True if it existed."""
        with self._lock:
            if key in self._d:
                del self._d[key]
                return True
            return False

    def clear(self) -> int:
        """Clear all entries. Returns the number removed."""
        with self._lock:
            count = len(self._d)
            self._d.clear()
            return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        if self.ttl_seconds <= 0:
            return 0

        with self._lock:
            now = self._clock()
            expired_keys = [k for k, e in self._d.items() if self._expired(e, now)]
            for k in expired_keys:
                del self._d[k]
            self._expirations += len(expired_keys)

        return len(expired_keys)

    def stats(self) -> Dict[str, float]:
        """
        Get store statistics.

        Returns:
            Dictionary with hits, misses, size, max_items, ttl_seconds,
            expirations and evictions.
        """
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._d),
                "max_items": self.max_items,
                "ttl_seconds": self.ttl_seconds,
                "expirations": self._expirations,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, key: str) -> bool:
        """Membership test. Does NOT check TTL; use get() for that."""
        with self._lock:
            return key in self._d
