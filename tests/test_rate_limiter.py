"""
Tests for the sliding-window rate limiter.

Tests cover:
- N requests allowed per window, N+1 rejected
- Window slides: oldest stamp expiry re-admits
- retry_after accuracy
- Per-user isolation
- update_limits(), reset(), LRU user cap
"""
import pytest

from tts_relay.core.config import RateLimitConfig
from tts_relay.tts.rate_limiter import RateLimiter

from conftest import FakeClock


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_requests=3, window_seconds=60, clock=clock)


class TestSlidingWindow:

    def test_allows_up_to_limit(self, limiter):
        results = [limiter.check("u1") for _ in range(3)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_rejects_over_limit(self, limiter, clock):
        for _ in range(3):
            limiter.check("u1")
            clock.advance(10)
        decision = limiter.check("u1")
        assert decision.allowed is False
        # first stamp at t=0, now t=30 -> 30 s left
        assert decision.retry_after_s == pytest.approx(30.0)

    def test_window_slides(self, limiter, clock):
        for _ in range(3):
            limiter.check("u1")
            clock.advance(10)
        clock.advance(31)  # first stamp leaves the window
        assert limiter.check("u1").allowed is True
        assert limiter.check("u1").allowed is False

    def test_rejected_requests_do_not_consume(self, limiter, clock):
        for _ in range(3):
            limiter.check("u1")
        for _ in range(5):
            limiter.check("u1")
        clock.advance(61)
        assert limiter.check("u1").remaining == 2

    def test_users_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("u1")
        assert limiter.check("u2").allowed is True

    def test_retry_after_zero_when_allowed(self, limiter):
        limiter.check("u1")
        assert limiter.retry_after("u1") == 0.0


class TestManagement:

    def test_update_limits(self, limiter):
        for _ in range(3):
            limiter.check("u1")
        limiter.update_limits(5, 60)
        assert limiter.check("u1").allowed is True

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.check("u1")
        assert limiter.reset("u1") is True
        assert limiter.check("u1").allowed is True

    def test_max_users_evicts(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, max_users=2, clock=FakeClock())
        for user in ("a", "b", "c"):
            limiter.check(user)
        stats = limiter.stats()
        assert stats["tracked_users"] == 2
        assert stats["evictions"] == 1
        # "a" was evicted, so it starts over
        assert limiter.check("a").allowed is True

    def test_from_config(self, clock):
        limiter = RateLimiter.from_config(RateLimitConfig(max_requests=1, window_seconds=5), clock=clock)
        assert limiter.check("u").allowed is True
        assert limiter.check("u").allowed is False
