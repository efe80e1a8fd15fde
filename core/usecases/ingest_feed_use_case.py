# core/usecases/ingest_feed_use_case.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, Tuple, TypeVar

from core.domain.entities.feed_entity import FeedEntity
from core.domain.entities.multi_month_snapshot_entity import MultiMonthSnapshotEntity
from core.domain.entities.single_value_snapshot_entity import SingleValueSnapshotEntity
from core.domain.entities.tick_entity import MultiMonthTick, TickEntity
from core.domain.exceptions import DuplicateRejected, OperationTimeoutError, TickParseError
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.circuit_breaker import CircuitBreaker
from core.services.deadline_service import with_deadline
from core.services.duplicate_filter import DuplicateFilter
from core.services.rate_controller import RateController
from core.services.reconciliation_service import ReconciliationService
from core.services.tick_parser import parse_multi_month_message, parse_single_value_message

C = TypeVar("C", TickEntity, MultiMonthTick)
S = TypeVar("S", SingleValueSnapshotEntity, MultiMonthSnapshotEntity)


class IngestOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNCHANGED = "unchanged"
    THROTTLED = "throttled"
    PARSE_ERROR = "parse_error"
    CIRCUIT_OPEN = "circuit_open"
    FAILED = "failed"


class IngestFeedUseCase(ABC, Generic[C, S]):
    """
    Turns upstream messages of one feed into persisted snapshots.

    Pipeline per message (arrival order, one feed):
      parse -> circuit check -> duplicate filter -> load prior -> merge
      -> unchanged check -> write throttle -> append (with deadline)

    Never raises out of `handle_message`: every failure maps to an IngestOutcome.

    Throttling keeps only the newest candidate. While the minimum write
    interval has not elapsed, later candidates replace the held one and a
    single flush task persists whichever is held when the interval expires.
    """

    def __init__(
        self,
        *,
        feed: FeedEntity,
        repository: SnapshotRepository,
        duplicate_filter: DuplicateFilter,
        rate_controller: RateController,
        circuit_breaker: CircuitBreaker,
        db_timeout_s: float,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed = feed
        self._repo = repository
        self._duplicates = duplicate_filter
        self._rate = rate_controller
        self._breaker = circuit_breaker
        self._db_timeout_s = float(db_timeout_s)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._latest: Optional[S] = None
        self._pending: Optional[Tuple[C, str]] = None
        self._flush_task: asyncio.Task | None = None

    @property
    def feed_key(self) -> str:
        return self._feed.feed_key

    @property
    def latest(self) -> Optional[S]:
        """Last snapshot this process persisted (or accepted from another path)."""
        return self._latest

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def handle_message(self, payload: Any, *, source: str = "stream") -> IngestOutcome:
        """
        Entry point for raw upstream payloads.
        """
        try:
            candidate = self._parse(payload)
        except TickParseError as exc:
            self._logger.warning("Dropping unparseable message feed=%s: %s", self.feed_key, exc)
            return IngestOutcome.PARSE_ERROR
        return await self.ingest(candidate, source=source)

    async def ingest(self, candidate: C, *, source: str = "stream") -> IngestOutcome:
        if self._breaker.is_open():
            self._logger.debug("Circuit open, skipping feed=%s ts=%s", self.feed_key, candidate.timestamp)
            return IngestOutcome.CIRCUIT_OPEN

        if not candidate.quotes():
            self._logger.debug("Empty candidate feed=%s ts=%s", self.feed_key, candidate.timestamp)
            return IngestOutcome.UNCHANGED

        try:
            await self._duplicates.check(candidate)
        except DuplicateRejected as exc:
            self._logger.debug("Duplicate rejected %s", exc)
            return IngestOutcome.DUPLICATE
        except OperationTimeoutError as exc:
            self._breaker.trip(str(exc))
            self._logger.warning("Duplicate check timed out feed=%s, dropping tick: %s", self.feed_key, exc)
            return IngestOutcome.FAILED
        except Exception as exc:
            self._logger.exception("Duplicate check failed feed=%s: %s", self.feed_key, exc)
            return IngestOutcome.FAILED

        prior = await self._load_prior()
        snapshot, changed = self._merge(candidate, prior, source)

        if not changed and prior is not None and self._within_window(prior.timestamp, snapshot.timestamp):
            self._logger.debug("No new data feed=%s ts=%s", self.feed_key, snapshot.timestamp)
            return IngestOutcome.UNCHANGED

        delay = self._rate.writes.delay_before_write()
        if delay > 0:
            self._hold(candidate, source, delay)
            return IngestOutcome.THROTTLED

        return await self._persist(candidate, snapshot)

    def accept_external(self, candidate: Any, snapshot: S) -> None:
        """
        Register a snapshot persisted outside the stream path (e.g. POST).
        """
        self._rate.writes.record_write()
        self._duplicates.remember(candidate)
        self._latest = snapshot
        self._rate.cache.clear()

    async def flush_pending(self) -> Optional[IngestOutcome]:
        """
        Re-run the held candidate now. Returns None when nothing is held.
        """
        held, self._pending = self._pending, None
        if held is None:
            return None
        candidate, source = held
        return await self.ingest(candidate, source=source)

    async def aclose(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pending = None

    # --- Internal ---

    def _within_window(self, a: datetime, b: datetime) -> bool:
        return abs((b - a).total_seconds()) <= self._duplicates.window_s

    def _hold(self, candidate: C, source: str, delay: float) -> None:
        superseded = self._pending is not None
        self._pending = (candidate, source)
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush_after(delay))
        self._logger.info(
            "Write throttled feed=%s, holding ts=%s (superseded=%s), retry in %.1fs",
            self.feed_key,
            candidate.timestamp,
            superseded,
            delay,
        )

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._flush_task = None
        try:
            await self.flush_pending()
        except Exception as exc:
            self._logger.exception("Flushing held candidate failed feed=%s: %s", self.feed_key, exc)

    async def _persist(self, candidate: C, snapshot: S) -> IngestOutcome:
        try:
            stored = await with_deadline(self._repo.append(snapshot), self._db_timeout_s, "append")
        except OperationTimeoutError as exc:
            self._breaker.trip(str(exc))
            self._logger.warning("Write timed out feed=%s, dropping tick: %s", self.feed_key, exc)
            return IngestOutcome.FAILED
        except Exception as exc:
            self._logger.exception("Write failed feed=%s: %s", self.feed_key, exc)
            return IngestOutcome.FAILED

        self._rate.writes.record_write()
        self._duplicates.remember(candidate)
        self._latest = stored
        self._rate.cache.clear()
        self._logger.info("Stored snapshot feed=%s ts=%s", self.feed_key, stored.timestamp)
        return IngestOutcome.ACCEPTED

    @abstractmethod
    def _parse(self, payload: Any) -> C:
        raise NotImplementedError

    @abstractmethod
    async def _load_prior(self) -> Optional[S]:
        raise NotImplementedError

    @abstractmethod
    def _merge(self, candidate: C, prior: Optional[S], source: str) -> Tuple[S, bool]:
        raise NotImplementedError


class IngestMultiMonthUseCase(IngestFeedUseCase[MultiMonthTick, MultiMonthSnapshotEntity]):
    """
    3-contract-month feeds. Partial readings are merged into the prior
    snapshot by ReconciliationService (fill-forward).
    """

    def __init__(self, *, reconciliation: ReconciliationService, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._reconciliation = reconciliation

    def _parse(self, payload: Any) -> MultiMonthTick:
        return parse_multi_month_message(self.feed_key, payload)

    async def _load_prior(self) -> Optional[MultiMonthSnapshotEntity]:
        return await self._reconciliation.load_prior(self._repo, self.feed_key, timeout_s=self._db_timeout_s)

    def _merge(
        self,
        candidate: MultiMonthTick,
        prior: Optional[MultiMonthSnapshotEntity],
        source: str,
    ) -> Tuple[MultiMonthSnapshotEntity, bool]:
        result = self._reconciliation.reconcile(candidate, prior)
        return result.snapshot, result.changed


class IngestSingleValueUseCase(IngestFeedUseCase[TickEntity, SingleValueSnapshotEntity]):
    """
    Single-value feeds (LME 3-month, cash settlement, spot).
    """

    def __init__(self, *, rate_tolerance: float = 0.001, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rate_tolerance = float(rate_tolerance)

    def _parse(self, payload: Any) -> TickEntity:
        return parse_single_value_message(self.feed_key, payload)

    async def _load_prior(self) -> Optional[SingleValueSnapshotEntity]:
        try:
            return await with_deadline(self._repo.find_latest(self.feed_key), self._db_timeout_s, "find_latest")
        except Exception as exc:
            self._logger.warning("Prior snapshot lookup failed for feed=%s: %s", self.feed_key, exc)
            return None

    def _merge(
        self,
        candidate: TickEntity,
        prior: Optional[SingleValueSnapshotEntity],
        source: str,
    ) -> Tuple[SingleValueSnapshotEntity, bool]:
        snapshot = SingleValueSnapshotEntity(
            feed_key=candidate.feed_key,
            value=candidate.value,
            rate_change=candidate.rate_change,
            rate_change_percent=candidate.rate_change_percent,
            timestamp=candidate.timestamp,
            time_span=candidate.time_span,
            source=source,
        )
        if prior is None:
            return snapshot, True

        changed = (
            abs(prior.value - snapshot.value) >= self._feed.value_tolerance
            or abs(prior.rate_change - snapshot.rate_change) >= self._rate_tolerance
            or abs(prior.rate_change_percent - snapshot.rate_change_percent) >= self._rate_tolerance
        )
        return snapshot, changed
