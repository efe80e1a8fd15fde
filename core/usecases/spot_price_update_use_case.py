from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from core.domain.entities.feed_entity import FeedEntity
from core.domain.entities.single_value_snapshot_entity import SingleValueSnapshotEntity
from core.domain.exceptions import PayloadValidationError, TickParseError
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.deadline_service import with_deadline
from core.services.rate_controller import RateController
from core.services.snapshot_presenter import SnapshotPresenter
from core.services.tick_parser import parse_price, parse_timestamp
from core.usecases.ingest_feed_use_case import IngestFeedUseCase

# (price, change, changePercent) combinations served by upstream fallbacks.
# A client echoing one of them back would persist fake data.
STALE_SENTINELS = (
    (2383.15, -5.45, -0.23),
    (2377.70, -5.45, -0.23),
)


@dataclass(frozen=True)
class SpotUpdateOutcome:
    created: bool
    data: Dict[str, Any]
    message: str


class SpotPriceUpdateUseCase:
    """
    Accept an externally computed value for a single-value feed.

    The stored value is `value` when given, else `threeMonthPrice + change`,
    rounded to 2 decimals. A row identical (within `duplicate_tolerance`) to
    the most recent one is not written again unless `forceUpdate` is set.
    Identical request bodies arriving within `post_cache_ttl_s` are answered
    from the response cache. This path is not subject to the stream's
    minimum write interval.
    """

    def __init__(
        self,
        *,
        feed: FeedEntity,
        repository: SnapshotRepository,
        rate_controller: RateController,
        duplicate_tolerance: float,
        post_cache_ttl_s: float,
        db_timeout_s: float,
        ingest: Optional[IngestFeedUseCase] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed = feed
        self._repo = repository
        self._rate = rate_controller
        self._tolerance = float(duplicate_tolerance)
        self._post_cache_ttl_s = float(post_cache_ttl_s)
        self._db_timeout_s = float(db_timeout_s)
        self._ingest = ingest
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def execute(self, body: Mapping[str, Any]) -> SpotUpdateOutcome:
        """
        Raises:
            PayloadValidationError: missing or non-numeric fields, or a stale sentinel.
            OperationTimeoutError: the store did not answer in time.
        """
        signature = ("post", json.dumps(body, sort_keys=True, default=str))
        cached = self._rate.cache.get(signature)
        if cached is not None:
            return SpotUpdateOutcome(created=False, data=cached, message="Cached response - duplicate request detected")

        three_month = self._number(body, "threeMonthPrice")
        explicit = self._number(body, "value")
        change = self._number(body, "change") or 0.0
        change_percent = self._number(body, "changePercent") or 0.0
        force = bool(body.get("forceUpdate", False))

        if explicit is None and three_month is None:
            raise PayloadValidationError("either value or threeMonthPrice is required")

        value = round(explicit if explicit is not None else three_month + change, 2)
        change = round(change, 2)
        change_percent = round(change_percent, 2)

        for candidate in (three_month, value):
            if candidate is not None and self._is_sentinel(candidate, change, change_percent):
                raise PayloadValidationError("stale default values rejected")

        snapshot = SingleValueSnapshotEntity(
            feed_key=self._feed.feed_key,
            value=value,
            rate_change=change,
            rate_change_percent=change_percent,
            timestamp=parse_timestamp(body.get("timestamp")),
            time_span=str(body.get("timeSpan") or "Today"),
            source="post",
        )

        if not force:
            latest = await with_deadline(self._repo.find_latest(self._feed.feed_key), self._db_timeout_s, "find_latest")
            if latest is not None and self._same_values(latest, snapshot):
                self._logger.debug("Consecutive duplicate feed=%s value=%s", self._feed.feed_key, value)
                data = self._payload(latest, three_month, duplicate=True)
                self._rate.cache.set(signature, data, ttl_s=self._post_cache_ttl_s)
                return SpotUpdateOutcome(
                    created=False,
                    data=data,
                    message="Consecutive duplicate detected, using existing record",
                )

        stored = await with_deadline(self._repo.append(snapshot), self._db_timeout_s, "append")
        if self._ingest is not None:
            self._ingest.accept_external(stored, stored)
        else:
            self._rate.cache.clear()

        self._logger.info("Stored posted value feed=%s value=%s", self._feed.feed_key, value)
        data = self._payload(stored, three_month, duplicate=False)
        self._rate.cache.set(signature, data, ttl_s=self._post_cache_ttl_s)
        return SpotUpdateOutcome(created=True, data=data, message="Value calculated and saved successfully")

    @staticmethod
    def _number(body: Mapping[str, Any], key: str) -> Optional[float]:
        raw = body.get(key)
        if raw is None:
            return None
        try:
            return parse_price(raw)
        except TickParseError as exc:
            raise PayloadValidationError(f"{key} must be a finite number") from exc

    @staticmethod
    def _is_sentinel(price: float, change: float, change_percent: float) -> bool:
        return any(
            math.isclose(price, p, abs_tol=0.005)
            and math.isclose(change, c, abs_tol=0.005)
            and math.isclose(change_percent, cp, abs_tol=0.005)
            for p, c, cp in STALE_SENTINELS
        )

    def _same_values(self, a: SingleValueSnapshotEntity, b: SingleValueSnapshotEntity) -> bool:
        return (
            abs(a.value - b.value) < self._tolerance
            and abs(a.rate_change - b.rate_change) < self._tolerance
            and abs(a.rate_change_percent - b.rate_change_percent) < self._tolerance
        )

    @staticmethod
    def _payload(
        snapshot: SingleValueSnapshotEntity,
        three_month: Optional[float],
        *,
        duplicate: bool,
    ) -> Dict[str, Any]:
        data = SnapshotPresenter.present(snapshot)
        if three_month is not None:
            data["threeMonthPrice"] = round(three_month, 2)
        data["duplicate"] = duplicate
        return data
