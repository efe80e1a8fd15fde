from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.domain.entities.feed_entity import FeedEntity
from core.domain.results import Fallback, Ok, Result, Stale
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.deadline_service import with_deadline
from core.services.rate_controller import RateController
from core.services.snapshot_presenter import SnapshotPresenter
from core.usecases.ingest_feed_use_case import IngestFeedUseCase


class GetLatestPriceUseCase:
    """
    Serve the latest reconciled value of a feed.

    Resolution order:
      1. in-memory latest (only when `prefer_memory=True`)
      2. response cache
      3. store (bounded by the DB deadline)
      4. last good value seen by this process -> Stale
      5. the feed's static fallback payload -> Fallback
    """

    CACHE_KEY = ("latest",)

    def __init__(
        self,
        *,
        feed: FeedEntity,
        repository: SnapshotRepository,
        rate_controller: RateController,
        db_timeout_s: float,
        ingest: Optional[IngestFeedUseCase] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed = feed
        self._repo = repository
        self._rate = rate_controller
        self._db_timeout_s = float(db_timeout_s)
        self._ingest = ingest
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._last_good: Optional[Dict[str, Any]] = None

    async def execute(self, *, prefer_memory: bool = False) -> Result:
        if prefer_memory:
            memory = self._memory_latest()
            if memory is not None:
                return Ok(memory)

        cached = self._rate.cache.get(self.CACHE_KEY)
        if cached is not None:
            return Ok(cached)

        try:
            snapshot = await with_deadline(
                self._repo.find_latest(self._feed.feed_key),
                self._db_timeout_s,
                "find_latest",
            )
        except Exception as exc:
            self._logger.warning("Latest lookup failed feed=%s: %s", self._feed.feed_key, exc)
            return self._degraded(f"store unavailable: {exc}")

        if snapshot is None:
            return self._degraded("no data stored yet")

        data = SnapshotPresenter.present(snapshot)
        self._rate.cache.set(self.CACHE_KEY, data)
        self._last_good = data
        return Ok(data)

    def _memory_latest(self) -> Optional[Dict[str, Any]]:
        if self._ingest is None or self._ingest.latest is None:
            return None
        return SnapshotPresenter.present(self._ingest.latest)

    def _degraded(self, reason: str) -> Result:
        last_known = self._memory_latest() or self._last_good
        if last_known is not None:
            return Stale(data=last_known, reason=reason)
        return Fallback(reason=reason, data=SnapshotPresenter.fallback(self._feed))
