"""Tests for the stream ingestion pipeline."""

import asyncio
import json
from datetime import timedelta

import pytest

from conftest import T0, InMemorySnapshotRepository, lme_message, mcx_message
from core.domain.entities.feed_entity import FEED_KIND_MULTI_MONTH, FeedEntity
from core.usecases.ingest_feed_use_case import IngestOutcome
from workers.feed_runtime import FeedRuntime

FULL = {"Jan25": (250.0, "1.0 (0.4%)"), "Feb25": (251.0, "1.1 (0.44%)"), "Mar25": (252.0, "1.2 (0.48%)")}


class SlowAppendRepository(InMemorySnapshotRepository):
    """Reads answer, writes never return."""

    async def append(self, snapshot):
        await asyncio.sleep(3600)


def _runtime(feed, repo, cfg, clock):
    return FeedRuntime.build(feed=feed, repository=repo, cfg=cfg, clock=clock)


@pytest.mark.asyncio
class TestIngestMultiMonth:
    """Multi-month feed: dedup, fill-forward, heartbeat rows."""

    async def test_first_message_is_stored(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.ACCEPTED
        assert len(repo.rows) == 1
        row = repo.rows[0]
        assert [s.label for s in row.slots()] == ["Jan25", "Feb25", "Mar25"]
        assert row.month1.rate_change == 1.0 and row.month1.rate_change_percent == 0.4
        assert rt.ingest.latest.month3.price == 252.0

    async def test_same_message_twice_writes_once(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        msg = mcx_message(T0, FULL)
        await rt.ingest.handle_message(msg)
        assert await rt.ingest.handle_message(msg) == IngestOutcome.DUPLICATE
        assert len(repo.rows) == 1

    async def test_identical_prices_inside_and_outside_window(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        outcomes = [
            await rt.ingest.handle_message(mcx_message(T0 + timedelta(minutes=m), FULL)) for m in (0, 2, 10)
        ]
        assert outcomes == [IngestOutcome.ACCEPTED, IngestOutcome.DUPLICATE, IngestOutcome.ACCEPTED]
        assert len(repo.rows) == 2
        assert repo.rows[1].timestamp == T0 + timedelta(minutes=10)

    async def test_price_reverting_inside_window_is_stored(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        moved = {"Jan25": (260.0, "1.0 (0.4%)")}
        outcomes = [
            await rt.ingest.handle_message(mcx_message(T0, FULL)),
            await rt.ingest.handle_message(mcx_message(T0 + timedelta(minutes=1), moved)),
            await rt.ingest.handle_message(mcx_message(T0 + timedelta(minutes=2), FULL)),
        ]
        assert outcomes == [IngestOutcome.ACCEPTED] * 3
        assert [r.month1.price for r in repo.rows] == [250.0, 260.0, 250.0]
        assert rt.ingest.latest.month1.price == 250.0

    async def test_partial_reading_fills_forward(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        await rt.ingest.handle_message(mcx_message(T0, FULL))
        outcome = await rt.ingest.handle_message(
            mcx_message(T0 + timedelta(minutes=1), {"Feb25": (255.0, "5.0 (2.0%)")})
        )
        assert outcome == IngestOutcome.ACCEPTED
        first, second = repo.rows
        assert second.month1 == first.month1
        assert second.month3 == first.month3
        assert second.month2.label == "Feb25" and second.month2.price == 255.0

    async def test_empty_prices_is_unchanged(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message(mcx_message(T0, {})) == IngestOutcome.UNCHANGED
        assert repo.rows == []

    async def test_unparseable_message_is_dropped(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message("not json") == IngestOutcome.PARSE_ERROR
        assert await rt.ingest.handle_message(json.dumps({"prices": []})) == IngestOutcome.PARSE_ERROR
        assert repo.rows == []

    async def test_json_string_payload(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message(json.dumps(mcx_message(T0, FULL))) == IngestOutcome.ACCEPTED

    async def test_open_circuit_skips_writes(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        rt.circuit_breaker.trip("test")
        assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.CIRCUIT_OPEN
        assert repo.rows == []
        clock.advance(cfg.CIRCUIT_BREAKER_TIMEOUT_S)
        assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.ACCEPTED

    async def test_write_timeout_trips_circuit(self, mcx_feed, cfg, clock):
        repo = SlowAppendRepository()
        rt = _runtime(mcx_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.FAILED
        assert rt.circuit_breaker.is_open()
        assert rt.ingest.latest is None

    async def test_store_failure_is_contained(self, mcx_feed, repo, cfg, clock):
        rt = _runtime(mcx_feed, repo, cfg, clock)
        repo.fail_with = RuntimeError("db down")
        assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.FAILED
        assert not rt.circuit_breaker.is_open()


@pytest.mark.asyncio
class TestWriteThrottle:
    """Newest candidate wins while the write interval is running."""

    @pytest.fixture
    def throttled_feed(self):
        return FeedEntity(
            feed_key="3-month-mcx",
            kind=FEED_KIND_MULTI_MONTH,
            dedup_window_s=300.0,
            value_tolerance=0.001,
            min_update_interval_s=5.0,
        )

    async def test_held_candidate_is_superseded(self, throttled_feed, repo, cfg, clock):
        rt = _runtime(throttled_feed, repo, cfg, clock)
        try:
            assert await rt.ingest.handle_message(mcx_message(T0, FULL)) == IngestOutcome.ACCEPTED
            clock.advance(1)

            second = mcx_message(T0 + timedelta(minutes=10), {"Jan25": (260.0, "0 (0%)")})
            third = mcx_message(T0 + timedelta(minutes=11), {"Jan25": (261.0, "0 (0%)")})
            assert await rt.ingest.handle_message(second) == IngestOutcome.THROTTLED
            assert await rt.ingest.handle_message(third) == IngestOutcome.THROTTLED
            assert rt.ingest.has_pending
            assert len(repo.rows) == 1

            clock.advance(5)
            assert await rt.ingest.flush_pending() == IngestOutcome.ACCEPTED
            assert len(repo.rows) == 2
            assert repo.rows[1].month1.price == 261.0
            assert repo.rows[1].month2 == repo.rows[0].month2
            assert await rt.ingest.flush_pending() is None
        finally:
            await rt.ingest.aclose()


@pytest.mark.asyncio
class TestIngestSingleValue:
    """Single-value feed: significant change threshold."""

    async def test_stores_parsed_value(self, price_feed, repo, cfg, clock):
        rt = _runtime(price_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message(lme_message(T0, "2,400.00")) == IngestOutcome.ACCEPTED
        row = repo.rows[0]
        assert row.value == 2400.0
        assert (row.rate_change, row.rate_change_percent) == (-5.45, -0.23)
        assert row.source == "stream"
        assert row.time_span == "Today"

    async def test_small_moves_inside_window_are_duplicates(self, price_feed, repo, cfg, clock):
        rt = _runtime(price_feed, repo, cfg, clock)
        await rt.ingest.handle_message(lme_message(T0, "2400.00"))
        later = T0 + timedelta(seconds=30)
        assert await rt.ingest.handle_message(lme_message(later, "2400.03")) == IngestOutcome.DUPLICATE
        assert await rt.ingest.handle_message(lme_message(later, "2400.10")) == IngestOutcome.ACCEPTED
        assert [r.value for r in repo.rows] == [2400.0, 2400.1]

    async def test_value_reverting_inside_window_is_stored(self, price_feed, repo, cfg, clock):
        rt = _runtime(price_feed, repo, cfg, clock)
        outcomes = [
            await rt.ingest.handle_message(lme_message(T0 + timedelta(seconds=s), v))
            for s, v in ((0, "2400.00"), (10, "2410.00"), (20, "2400.00"))
        ]
        assert outcomes == [IngestOutcome.ACCEPTED] * 3
        assert [r.value for r in repo.rows] == [2400.0, 2410.0, 2400.0]
        assert rt.ingest.latest.value == 2400.0

    async def test_wrapped_payload(self, price_feed, repo, cfg, clock):
        rt = _runtime(price_feed, repo, cfg, clock)
        payload = json.dumps({"success": True, "data": lme_message(T0, "2401.5")})
        assert await rt.ingest.handle_message(payload, source="data-endpoint") == IngestOutcome.ACCEPTED
        assert repo.rows[0].source == "data-endpoint"

    async def test_missing_value_is_parse_error(self, price_feed, repo, cfg, clock):
        rt = _runtime(price_feed, repo, cfg, clock)
        assert await rt.ingest.handle_message({"Timestamp": T0.isoformat()}) == IngestOutcome.PARSE_ERROR
