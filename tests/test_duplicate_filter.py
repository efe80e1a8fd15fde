"""Tests for duplicate detection."""

from datetime import timedelta

import pytest

from conftest import T0
from core.domain.entities.multi_month_snapshot_entity import MonthSlot, MultiMonthSnapshotEntity
from core.domain.entities.single_value_snapshot_entity import SingleValueSnapshotEntity
from core.domain.entities.tick_entity import ContractQuote, MultiMonthTick, TickEntity
from core.domain.exceptions import DuplicateRejected, OperationTimeoutError
from core.services.duplicate_filter import DuplicateFilter, quotes_match


def _mm_tick(ts, **prices):
    return MultiMonthTick(
        feed_key="3-month-mcx",
        timestamp=ts,
        contracts=[ContractQuote(label=l, price=p) for l, p in prices.items()],
    )


def _mm_row(ts, **prices):
    slots = [MonthSlot(label=l, price=p) for l, p in prices.items()]
    slots += [MonthSlot() for _ in range(3 - len(slots))]
    return MultiMonthSnapshotEntity(feed_key="3-month-mcx", timestamp=ts, month1=slots[0], month2=slots[1], month3=slots[2])


def _filter(repo, clock, *, window_s=300.0, tolerance=0.001, feed_key="3-month-mcx"):
    return DuplicateFilter(
        feed_key=feed_key,
        repository=repo,
        window_s=window_s,
        value_tolerance=tolerance,
        memory_ttl_s=30.0,
        db_timeout_s=0.1,
        clock=clock,
    )


class TestQuotesMatch:
    """Label-wise comparison."""

    def test_absent_labels_do_not_force_inequality(self):
        assert quotes_match({"Feb25": 251.0}, {"Jan25": 250.0, "Feb25": 251.0, "Mar25": 252.0}, 0.001)

    def test_label_must_exist(self):
        assert not quotes_match({"Apr25": 251.0}, {"Jan25": 250.0}, 0.001)

    def test_tolerance_is_strict(self):
        assert quotes_match({"v": 1.0}, {"v": 1.0009}, 0.001)
        assert not quotes_match({"v": 1.0}, {"v": 1.002}, 0.001)


@pytest.mark.asyncio
class TestDuplicateFilter:
    """Memory and store stages."""

    async def test_row_within_window_is_duplicate(self, repo, clock):
        await repo.append(_mm_row(T0, Jan25=250.0, Feb25=251.0))
        f = _filter(repo, clock)
        assert await f.is_duplicate(_mm_tick(T0 + timedelta(minutes=2), Jan25=250.0))

    async def test_row_outside_window_is_not_duplicate(self, repo, clock):
        await repo.append(_mm_row(T0, Jan25=250.0))
        f = _filter(repo, clock)
        assert not await f.is_duplicate(_mm_tick(T0 + timedelta(minutes=10), Jan25=250.0))

    async def test_only_newest_row_in_window_counts(self, repo, clock):
        await repo.append(_mm_row(T0, Jan25=250.0))
        await repo.append(_mm_row(T0 + timedelta(minutes=1), Jan25=260.0))
        f = _filter(repo, clock)
        assert not await f.is_duplicate(_mm_tick(T0 + timedelta(minutes=2), Jan25=250.0))
        assert await f.is_duplicate(_mm_tick(T0 + timedelta(minutes=2), Jan25=260.0))

    async def test_different_price_is_not_duplicate(self, repo, clock):
        await repo.append(_mm_row(T0, Jan25=250.0))
        f = _filter(repo, clock)
        assert not await f.is_duplicate(_mm_tick(T0, Jan25=250.5))

    async def test_memory_signature_short_circuits_store(self, repo, clock):
        f = _filter(repo, clock)
        tick = _mm_tick(T0, Jan25=250.0)
        f.remember(tick)
        assert await f.is_duplicate(tick)
        assert repo.window_queries == 0

    async def test_memory_signature_expires(self, repo, clock):
        f = _filter(repo, clock)
        tick = _mm_tick(T0, Jan25=250.0)
        f.remember(tick)
        clock.advance(31)
        assert not f.is_memory_duplicate(tick)

    async def test_memory_requires_same_timestamp(self, repo, clock):
        f = _filter(repo, clock)
        f.remember(_mm_tick(T0, Jan25=250.0))
        assert not f.is_memory_duplicate(_mm_tick(T0 + timedelta(seconds=1), Jan25=250.0))

    async def test_is_duplicate_does_not_remember(self, repo, clock):
        f = _filter(repo, clock)
        tick = _mm_tick(T0, Jan25=250.0)
        await f.is_duplicate(tick)
        assert not f.is_memory_duplicate(tick)

    async def test_check_raises_duplicate_rejected(self, repo, clock):
        f = _filter(repo, clock)
        tick = _mm_tick(T0, Jan25=250.0)
        f.remember(tick)
        with pytest.raises(DuplicateRejected):
            await f.check(tick)

    async def test_single_value_significant_change(self, repo, clock):
        await repo.append(SingleValueSnapshotEntity(feed_key="price", value=2400.0, timestamp=T0))
        f = _filter(repo, clock, window_s=60.0, tolerance=0.05, feed_key="price")
        near = TickEntity(feed_key="price", value=2400.03, timestamp=T0 + timedelta(seconds=30))
        far = TickEntity(feed_key="price", value=2400.10, timestamp=T0 + timedelta(seconds=30))
        assert await f.is_duplicate(near)
        assert not await f.is_duplicate(far)

    async def test_store_timeout_surfaces(self, repo, clock):
        repo.hang = True
        f = _filter(repo, clock)
        with pytest.raises(OperationTimeoutError):
            await f.is_duplicate(_mm_tick(T0, Jan25=250.0))

    async def test_single_value_compares_newest_row_only(self, repo, clock):
        await repo.append(SingleValueSnapshotEntity(feed_key="price", value=2400.0, timestamp=T0))
        await repo.append(SingleValueSnapshotEntity(feed_key="price", value=2410.0, timestamp=T0 + timedelta(seconds=10)))
        f = _filter(repo, clock, window_s=60.0, tolerance=0.05, feed_key="price")
        back = TickEntity(feed_key="price", value=2400.0, timestamp=T0 + timedelta(seconds=20))
        assert not await f.is_duplicate(back)
