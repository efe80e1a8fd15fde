"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta
from typing import Any, List, Optional

import pytest

from config.settings import Settings
from core.domain.entities.feed_entity import FEED_KIND_MULTI_MONTH, FEED_KIND_SINGLE_VALUE, FeedEntity
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.clock_service import IST, now_ist

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=IST)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemorySnapshotRepository(SnapshotRepository):
    """SnapshotRepository backed by a list; can be told to fail or hang."""

    def __init__(self) -> None:
        self.rows: List[Any] = []
        self.fail_with: Optional[BaseException] = None
        self.hang = False
        self.window_queries = 0
        self._ids = itertools.count(1)

    async def _gate(self) -> None:
        if self.hang:
            await asyncio.sleep(3600)
        if self.fail_with is not None:
            raise self.fail_with

    async def ensure_indexes(self) -> None:
        return None

    def _for(self, feed_key: str) -> List[Any]:
        return [r for r in self.rows if r.feed_key == feed_key]

    async def find_latest(self, feed_key: str):
        await self._gate()
        rows = self._for(feed_key)
        return rows[-1] if rows else None

    async def find_recent_within_window(
        self,
        feed_key: str,
        *,
        center_time: datetime,
        window_s: float,
        limit: Optional[int] = None,
    ):
        await self._gate()
        self.window_queries += 1
        delta = timedelta(seconds=window_s)
        # rows are kept in insertion order, so reversed is newest-created first
        out = [r for r in reversed(self._for(feed_key)) if center_time - delta <= r.timestamp <= center_time + delta]
        return out[:limit] if limit else out

    async def append(self, snapshot):
        await self._gate()
        stored = snapshot.stamped(now_ist())
        stored.id = str(next(self._ids))
        self.rows.append(stored)
        return stored

    async def delete_older_than(self, feed_key: str, cutoff: datetime) -> int:
        await self._gate()
        keep = [r for r in self.rows if r.feed_key != feed_key or r.created_at >= cutoff]
        removed = len(self.rows) - len(keep)
        self.rows = keep
        return removed

    async def delete_exact_duplicates_keeping_first(self, feed_key: str) -> int:
        await self._gate()
        seen = set()
        keep = []
        for r in self.rows:
            if r.feed_key != feed_key:
                keep.append(r)
                continue
            key = (r.timestamp, tuple(sorted(r.quotes().items())))
            if key in seen:
                continue
            seen.add(key)
            keep.append(r)
        removed = len(self.rows) - len(keep)
        self.rows = keep
        return removed

    async def count(self, feed_key: str) -> int:
        await self._gate()
        return len(self._for(feed_key))

    async def list_page(self, feed_key: str, *, page: int, limit: int):
        await self._gate()
        rows = sorted(self._for(feed_key), key=lambda r: r.timestamp, reverse=True)
        start = (page - 1) * limit
        return rows[start : start + limit]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo() -> InMemorySnapshotRepository:
    return InMemorySnapshotRepository()


@pytest.fixture
def cfg() -> Settings:
    s = Settings()
    s.RATE_LIMIT_WINDOW_S = 60.0
    s.MAX_REQUESTS_PER_IP = 100
    s.MAX_DB_WRITES_PER_WINDOW = 10
    s.CACHE_TTL_S = 30.0
    s.MAX_CACHE_ITEMS = 100
    s.POST_CACHE_TTL_S = 2.0
    s.DB_TIMEOUT_S = 0.2
    s.MAINTENANCE_TIMEOUT_S = 0.5
    s.RECONNECT_BASE_DELAY_S = 1.0
    s.RECONNECT_MAX_DELAY_S = 30.0
    s.MAX_RECONNECT_ATTEMPTS = 2
    s.CIRCUIT_BREAKER_TIMEOUT_S = 60.0
    s.GENERAL_VALUE_TOLERANCE = 0.001
    s.SPOT_DUPLICATE_TOLERANCE = 0.01
    s.RETENTION_DEFAULT_DAYS = 7
    s.RETENTION_MAX_DAYS = 30
    return s


@pytest.fixture
def mcx_feed() -> FeedEntity:
    return FeedEntity(
        feed_key="3-month-mcx",
        kind=FEED_KIND_MULTI_MONTH,
        dedup_window_s=300.0,
        value_tolerance=0.001,
        min_update_interval_s=0.0,
    )


@pytest.fixture
def price_feed() -> FeedEntity:
    return FeedEntity(
        feed_key="price",
        kind=FEED_KIND_SINGLE_VALUE,
        dedup_window_s=60.0,
        value_tolerance=0.05,
        min_update_interval_s=0.0,
        fallback={"value": 2383.15, "rateChange": -5.45, "rateChangePercent": -0.23, "timeSpan": "Today"},
    )


@pytest.fixture
def spot_feed() -> FeedEntity:
    return FeedEntity(
        feed_key="spot-price",
        kind=FEED_KIND_SINGLE_VALUE,
        dedup_window_s=60.0,
        value_tolerance=0.01,
        min_update_interval_s=5.0,
        fallback={"value": 2377.70, "rateChange": -5.45, "rateChangePercent": -0.23, "timeSpan": "Today"},
    )


def mcx_message(ts: datetime, prices: dict) -> dict:
    """Build an upstream multi-month payload: prices = {label: (price, "rate (pct%)")}."""
    return {
        "timestamp": ts.isoformat(),
        "prices": {label: {"price": p, "site_rate_change": rc} for label, (p, rc) in prices.items()},
    }


def lme_message(ts: datetime, value: str, rate: str = "-5.45 (-0.23%)") -> dict:
    return {"Value": value, "Rate of Change": rate, "Timestamp": ts.isoformat(), "Time span": "Today"}
