"""Tests for request limiting, write throttling and the response cache."""

from core.services.rate_controller import PerIpRateLimiter, RateController, ResponseCache, WriteThrottle


class TestPerIpRateLimiter:
    """Fixed window per IP, lazily reset."""

    def test_rejects_after_limit(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=3, clock=clock)
        assert [limiter.allow("1.1.1.1") for _ in range(4)] == [True, True, True, False]

    def test_ips_are_independent(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=1, clock=clock)
        assert limiter.allow("a")
        assert limiter.allow("b")
        assert not limiter.allow("a")

    def test_window_resets_lazily(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=1, clock=clock)
        assert limiter.allow("a")
        assert not limiter.allow("a")
        clock.advance(60)
        assert limiter.allow("a")

    def test_retry_after(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=1, clock=clock)
        limiter.allow("a")
        clock.advance(20)
        assert limiter.retry_after("a") == 40

    def test_prune_drops_stale_windows(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=1, clock=clock)
        limiter.allow("a")
        clock.advance(61)
        limiter.allow("b")
        assert limiter.prune() == 1
        assert len(limiter) == 1

    def test_active_ips_are_bounded(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=5, clock=clock)
        limiter.MAX_TRACKED_IPS = 3
        for ip in ("a", "b", "c", "d"):
            assert limiter.allow(ip)
            clock.advance(1)
        assert len(limiter) == 3
        # "a" was evicted, so it starts a fresh window
        assert limiter.retry_after("a") == 0.0
        assert limiter.retry_after("d") == 59.0

    def test_reset_window_moves_ip_to_newest(self, clock):
        limiter = PerIpRateLimiter(window_s=60, max_requests=5, clock=clock)
        limiter.MAX_TRACKED_IPS = 2
        limiter.allow("a")
        clock.advance(30)
        limiter.allow("b")
        clock.advance(31)
        limiter.allow("a")
        limiter.allow("c")
        assert limiter.retry_after("a") > 0
        assert limiter.retry_after("b") == 0.0


class TestWriteThrottle:
    """Minimum interval and per-window cap."""

    def test_first_write_allowed(self, clock):
        throttle = WriteThrottle(min_interval_s=5, max_writes_per_window=10, window_s=60, clock=clock)
        assert throttle.delay_before_write() == 0

    def test_min_interval(self, clock):
        throttle = WriteThrottle(min_interval_s=5, max_writes_per_window=10, window_s=60, clock=clock)
        throttle.record_write()
        clock.advance(2)
        assert throttle.delay_before_write() == 3
        clock.advance(3)
        assert throttle.delay_before_write() == 0

    def test_cap_per_window(self, clock):
        throttle = WriteThrottle(min_interval_s=0, max_writes_per_window=2, window_s=60, clock=clock)
        throttle.record_write()
        clock.advance(10)
        throttle.record_write()
        clock.advance(10)
        assert throttle.delay_before_write() == 40
        clock.advance(40)
        assert throttle.delay_before_write() == 0


class TestResponseCache:
    """TTL and oldest-20% eviction."""

    def test_ttl(self, clock):
        cache = ResponseCache(max_items=10, ttl_s=30, clock=clock)
        cache.set("k", 1)
        clock.advance(29)
        assert cache.get("k") == 1
        clock.advance(1)
        assert cache.get("k") is None

    def test_per_entry_ttl(self, clock):
        cache = ResponseCache(max_items=10, ttl_s=30, clock=clock)
        cache.set("k", 1, ttl_s=2)
        clock.advance(2)
        assert cache.get("k") is None

    def test_overflow_evicts_oldest_fifth(self, clock):
        cache = ResponseCache(max_items=10, ttl_s=30, clock=clock)
        for i in range(11):
            cache.set(i, i)
        # 11 entries -> ceil(2.2) = 3 oldest evicted
        assert len(cache) == 8
        assert cache.get(0) is None and cache.get(2) is None
        assert cache.get(3) == 3 and cache.get(10) == 10

    def test_clear(self, clock):
        cache = ResponseCache(max_items=10, ttl_s=30, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert len(cache) == 0


class TestRateController:
    """Per-feed composition."""

    def _controller(self, clock, feed_key="price"):
        return RateController(
            feed_key=feed_key,
            window_s=60,
            max_requests_per_ip=1,
            min_update_interval_s=5,
            max_writes_per_window=10,
            cache_ttl_s=30,
            max_cache_items=100,
            clock=clock,
        )

    def test_feeds_do_not_share_state(self, clock):
        a = self._controller(clock, "price")
        b = self._controller(clock, "3-month-mcx")
        assert a.allow_request("ip")
        assert b.allow_request("ip")
        a.cache.set("latest", 1)
        assert b.cache.get("latest") is None

    def test_force_clear(self, clock):
        rc = self._controller(clock)
        rc.cache.set("x", 1)
        assert rc.force_clear() == 1
        assert rc.status()["cache_items"] == 0
