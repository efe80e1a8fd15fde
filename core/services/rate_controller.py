"""
Request and write throttling for one feed.

All state here is process-local and mutated from the event loop only. Every
method completes without awaiting, so a timer callback never sees a
half-updated map.
"""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Hashable, Optional, Tuple

Clock = Callable[[], float]


@dataclass
class RateLimitWindow:
    started_at: float
    count: int = 0


class PerIpRateLimiter:
    """
    Fixed window request counter per client IP.

    A window is reset lazily the first time the IP shows up after it expired.
    At most `MAX_TRACKED_IPS` windows are kept: expired ones are pruned first,
    then the oldest windows are evicted.
    """

    MAX_TRACKED_IPS = 10_000

    def __init__(self, *, window_s: float, max_requests: int, clock: Clock = time.monotonic) -> None:
        self._window_s = float(window_s)
        self._max_requests = int(max_requests)
        self._clock = clock
        self._windows: "OrderedDict[str, RateLimitWindow]" = OrderedDict()

    def allow(self, ip: str) -> bool:
        now = self._clock()
        window = self._windows.get(ip)
        if window is None or now - window.started_at >= self._window_s:
            self._windows.pop(ip, None)
            if len(self._windows) >= self.MAX_TRACKED_IPS:
                self.prune()
            while len(self._windows) >= self.MAX_TRACKED_IPS:
                self._windows.popitem(last=False)
            window = RateLimitWindow(started_at=now)
            self._windows[ip] = window

        if window.count >= self._max_requests:
            return False
        window.count += 1
        return True

    def retry_after(self, ip: str) -> float:
        window = self._windows.get(ip)
        if window is None:
            return 0.0
        return max(0.0, self._window_s - (self._clock() - window.started_at))

    def prune(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        stale = [ip for ip, w in self._windows.items() if now - w.started_at >= self._window_s]
        for ip in stale:
            del self._windows[ip]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class WriteThrottle:
    """
    Minimum interval between successful writes, plus a cap on writes per window.
    """

    def __init__(
        self,
        *,
        min_interval_s: float,
        max_writes_per_window: int,
        window_s: float,
        clock: Clock = time.monotonic,
    ) -> None:
        self._min_interval_s = float(min_interval_s)
        self._max_writes = int(max_writes_per_window)
        self._window_s = float(window_s)
        self._clock = clock

        self._last_write_at: Optional[float] = None
        self._recent: Deque[float] = deque()

    def delay_before_write(self) -> float:
        """
        Seconds to wait before the next write is allowed (0 when allowed now).
        """
        now = self._clock()
        while self._recent and now - self._recent[0] >= self._window_s:
            self._recent.popleft()

        delay = 0.0
        if self._last_write_at is not None:
            delay = max(delay, self._min_interval_s - (now - self._last_write_at))
        if self._max_writes > 0 and len(self._recent) >= self._max_writes:
            delay = max(delay, self._window_s - (now - self._recent[0]))
        return max(0.0, delay)

    def record_write(self) -> None:
        now = self._clock()
        self._last_write_at = now
        self._recent.append(now)

    @property
    def last_write_at(self) -> Optional[float]:
        return self._last_write_at

    def writes_in_window(self) -> int:
        self.delay_before_write()
        return len(self._recent)


class ResponseCache:
    """
    Bounded TTL cache. On overflow the oldest 20% of entries are evicted.
    """

    EVICT_FRACTION = 0.2

    def __init__(self, *, max_items: int, ttl_s: float, clock: Clock = time.monotonic) -> None:
        self._max_items = max(1, int(max_items))
        self._ttl_s = float(ttl_s)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()

    def get(self, key: Hashable) -> Any:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any, *, ttl_s: Optional[float] = None) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self._clock() + (self._ttl_s if ttl_s is None else ttl_s), value)
        if len(self._entries) > self._max_items:
            self._evict_oldest()

    def _evict_oldest(self) -> None:
        n = max(1, math.ceil(len(self._entries) * self.EVICT_FRACTION))
        for _ in range(n):
            self._entries.popitem(last=False)

    def clear(self) -> int:
        n = len(self._entries)
        self._entries.clear()
        return n

    def __len__(self) -> int:
        return len(self._entries)


class RateController:
    """
    Per-feed composition of request limiting, write throttling and response caching.
    """

    def __init__(
        self,
        *,
        feed_key: str,
        window_s: float,
        max_requests_per_ip: int,
        min_update_interval_s: float,
        max_writes_per_window: int,
        cache_ttl_s: float,
        max_cache_items: int,
        clock: Clock = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.feed_key = feed_key
        self.requests = PerIpRateLimiter(window_s=window_s, max_requests=max_requests_per_ip, clock=clock)
        self.writes = WriteThrottle(
            min_interval_s=min_update_interval_s,
            max_writes_per_window=max_writes_per_window,
            window_s=window_s,
            clock=clock,
        )
        self.cache = ResponseCache(max_items=max_cache_items, ttl_s=cache_ttl_s, clock=clock)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    def allow_request(self, ip: str) -> bool:
        allowed = self.requests.allow(ip)
        if not allowed:
            self._logger.warning("Rate limit exceeded feed=%s ip=%s", self.feed_key, ip)
        return allowed

    def force_clear(self) -> int:
        """Memory-pressure path: drop every cached response."""
        return self.cache.clear()

    def status(self) -> Dict[str, Any]:
        return {
            "cache_items": len(self.cache),
            "tracked_ips": len(self.requests),
            "writes_in_window": self.writes.writes_in_window(),
        }
