"""
Per-User Sliding-Window Rate Limiter.

Each user owns an ordered list of request timestamps. A check prunes
timestamps older than the window, rejects if the remaining count is
already at the limit, and otherwise records the new request:

    prune -> check -> append

Windows live in a bounded LRU store (1000 users by default). Evicting a
user forgets their window, which can only make the limiter more lenient.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

from tts_relay.core.config import Defaults, RateLimitConfig
from tts_relay.core.logging import debug, get_logger
from tts_relay.tts.cache import TinyLRUCache

_LOG = get_logger("tts-relay.ratelimit")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_s: float = 0.0


class RateLimiter:
    """
    Sliding-window limiter keyed by user id.

    Args:
        max_requests: Requests allowed per window.
        window_seconds: Window length.
        max_users: Tracked users before LRU eviction.
        clock: Monotonic time source (tests inject a fake).
    """

    def __init__(
        self,
        max_requests: int = Defaults.RATE_LIMIT,
        window_seconds: float = Defaults.RATE_LIMIT_WINDOW_SECONDS,
        max_users: int = Defaults.RATE_LIMIT_MAX_USERS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._windows: TinyLRUCache[List[float]] = TinyLRUCache(
            max_items=max_users, name="ratelimit", clock=clock,
        )
        # Guards the read-modify-write on a single window
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic) -> "RateLimiter":
        return cls(config.max_requests, config.window_seconds, config.max_users, clock=clock)

    def update_limits(self, max_requests: int, window_seconds: float) -> None:
        with self._lock:
            self.max_requests = int(max_requests)
            self.window_seconds = float(window_seconds)

    def _pruned(self, user_id: str, now: float) -> List[float]:
        stamps = self._windows.get(user_id) or []
        cutoff = now - self.window_seconds
        return [t for t in stamps if t > cutoff]

    def check(self, user_id: str) -> RateLimitDecision:
        """Record a request for user_id if the window allows it."""
        with self._lock:
            now = self._clock()
            stamps = self._pruned(user_id, now)

            if len(stamps) >= self.max_requests:
                retry_after = max(0.0, stamps[len(stamps) - self.max_requests] + self.window_seconds - now)
                self._windows.set(user_id, stamps)
                debug(_LOG, "limited", user=user_id, count=len(stamps), retry_after_s=round(retry_after, 2))
                return RateLimitDecision(allowed=False, remaining=0, retry_after_s=retry_after)

            stamps.append(now)
            self._windows.set(user_id, stamps)
            return RateLimitDecision(allowed=True, remaining=self.max_requests - len(stamps))

    def retry_after(self, user_id: str) -> float:
        """Seconds until user_id may submit again (0 when allowed now)."""
        with self._lock:
            now = self._clock()
            stamps = self._pruned(user_id, now)
            if len(stamps) < self.max_requests:
                return 0.0
            return max(0.0, stamps[len(stamps) - self.max_requests] + self.window_seconds - now)

    def reset(self, user_id: str) -> bool:
        with self._lock:
            return self._windows.delete(user_id)

    def clear(self) -> int:
        with self._lock:
            return self._windows.clear()

    def stats(self) -> Dict[str, float]:
        stats = self._windows.stats()
        return {
            "tracked_users": stats["size"],
            "max_users": stats["max_items"],
            "evictions": stats["evictions"],
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }
