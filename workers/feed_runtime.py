from __future__ import annotations

import contextlib
import logging
import time
from typing import Any, Callable, Dict, Optional

from adapters.external.feeds.feed_data_client import FeedDataClient
from adapters.external.feeds.sse_stream_client import SseStreamClient
from config.settings import Settings, settings
from core.domain.entities.feed_entity import FeedEntity
from core.domain.exceptions import FeedConnectionError
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.circuit_breaker import CircuitBreaker
from core.services.duplicate_filter import DuplicateFilter
from core.services.rate_controller import RateController
from core.services.reconciliation_service import ReconciliationService
from core.usecases.get_latest_price_use_case import GetLatestPriceUseCase
from core.usecases.get_price_history_use_case import GetPriceHistoryUseCase
from core.usecases.ingest_feed_use_case import (
    IngestFeedUseCase,
    IngestMultiMonthUseCase,
    IngestSingleValueUseCase,
)
from core.usecases.maintenance_use_case import MaintenanceUseCase
from core.usecases.spot_price_update_use_case import SpotPriceUpdateUseCase
from workers.stream_connector import EventSource, StreamConnector


class FeedRuntime:
    """
    Everything one feed needs at runtime, built once per process.

    Nothing here is shared between feeds: caches, rate limits, throttles and
    the circuit breaker are all per-feed instances.
    """

    def __init__(
        self,
        *,
        feed: FeedEntity,
        repository: SnapshotRepository,
        rate_controller: RateController,
        circuit_breaker: CircuitBreaker,
        ingest: IngestFeedUseCase,
        latest: GetLatestPriceUseCase,
        history: GetPriceHistoryUseCase,
        maintenance: MaintenanceUseCase,
        spot_update: Optional[SpotPriceUpdateUseCase] = None,
        connector: Optional[StreamConnector] = None,
        data_client: Optional[FeedDataClient] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.feed = feed
        self.repository = repository
        self.rate_controller = rate_controller
        self.circuit_breaker = circuit_breaker
        self.ingest = ingest
        self.latest = latest
        self.history = history
        self.maintenance = maintenance
        self.spot_update = spot_update
        self.connector = connector
        self.data_client = data_client
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def feed_key(self) -> str:
        return self.feed.feed_key

    @classmethod
    def build(
        cls,
        *,
        feed: FeedEntity,
        repository: SnapshotRepository,
        cfg: Settings = settings,
        source: Optional[EventSource] = None,
        data_client: Optional[FeedDataClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "FeedRuntime":
        """
        Wire a feed from its definition.

        `source` and `data_client` default to httpx clients for the feed's
        URLs; tests pass fakes.
        """
        rate = RateController(
            feed_key=feed.feed_key,
            window_s=cfg.RATE_LIMIT_WINDOW_S,
            max_requests_per_ip=cfg.MAX_REQUESTS_PER_IP,
            min_update_interval_s=feed.min_update_interval_s,
            max_writes_per_window=cfg.MAX_DB_WRITES_PER_WINDOW,
            cache_ttl_s=cfg.CACHE_TTL_S,
            max_cache_items=cfg.MAX_CACHE_ITEMS,
            clock=clock,
        )
        breaker = CircuitBreaker(feed_key=feed.feed_key, reset_after_s=cfg.CIRCUIT_BREAKER_TIMEOUT_S, clock=clock)
        duplicates = DuplicateFilter(
            feed_key=feed.feed_key,
            repository=repository,
            window_s=feed.dedup_window_s,
            value_tolerance=feed.value_tolerance,
            memory_ttl_s=cfg.CACHE_TTL_S,
            db_timeout_s=cfg.DB_TIMEOUT_S,
            clock=clock,
        )

        common: Dict[str, Any] = dict(
            feed=feed,
            repository=repository,
            duplicate_filter=duplicates,
            rate_controller=rate,
            circuit_breaker=breaker,
            db_timeout_s=cfg.DB_TIMEOUT_S,
        )
        ingest: IngestFeedUseCase
        if feed.is_multi_month:
            ingest = IngestMultiMonthUseCase(
                reconciliation=ReconciliationService(tolerance=cfg.GENERAL_VALUE_TOLERANCE),
                **common,
            )
        else:
            ingest = IngestSingleValueUseCase(rate_tolerance=cfg.GENERAL_VALUE_TOLERANCE, **common)

        spot_update = None
        if not feed.is_multi_month:
            spot_update = SpotPriceUpdateUseCase(
                feed=feed,
                repository=repository,
                rate_controller=rate,
                duplicate_tolerance=cfg.SPOT_DUPLICATE_TOLERANCE,
                post_cache_ttl_s=cfg.POST_CACHE_TTL_S,
                db_timeout_s=cfg.DB_TIMEOUT_S,
                ingest=ingest,
            )

        if data_client is None and feed.data_url:
            data_client = FeedDataClient(timeout_s=cfg.OUTBOUND_TIMEOUT_S)

        runtime = cls(
            feed=feed,
            repository=repository,
            rate_controller=rate,
            circuit_breaker=breaker,
            ingest=ingest,
            latest=GetLatestPriceUseCase(
                feed=feed,
                repository=repository,
                rate_controller=rate,
                db_timeout_s=cfg.DB_TIMEOUT_S,
                ingest=ingest,
            ),
            history=GetPriceHistoryUseCase(
                feed_key=feed.feed_key,
                repository=repository,
                rate_controller=rate,
                db_timeout_s=cfg.DB_TIMEOUT_S,
            ),
            maintenance=MaintenanceUseCase(
                feed_key=feed.feed_key,
                repository=repository,
                circuit_breaker=breaker,
                rate_controller=rate,
                default_days=cfg.RETENTION_DEFAULT_DAYS,
                max_days=cfg.RETENTION_MAX_DAYS,
                timeout_s=cfg.MAINTENANCE_TIMEOUT_S,
            ),
            spot_update=spot_update,
            data_client=data_client,
        )

        if source is None and feed.stream_url:
            source = SseStreamClient(
                url=feed.stream_url,
                connect_timeout_s=cfg.STREAM_CONNECT_TIMEOUT_S,
                idle_timeout_s=cfg.STREAM_IDLE_TIMEOUT_S,
            )
        if source is not None:
            runtime.connector = StreamConnector(
                feed_key=feed.feed_key,
                source=source,
                handler=ingest.handle_message,
                base_delay_s=cfg.RECONNECT_BASE_DELAY_S,
                max_delay_s=cfg.RECONNECT_MAX_DELAY_S,
                max_attempts=cfg.MAX_RECONNECT_ATTEMPTS,
                on_give_up=runtime.on_stream_give_up,
            )
        return runtime

    async def start(self) -> None:
        if self.connector is not None:
            await self.connector.start()

    async def stop(self) -> None:
        if self.connector is not None:
            with contextlib.suppress(Exception):
                await self.connector.aclose()
        with contextlib.suppress(Exception):
            await self.ingest.aclose()
        if self.data_client is not None:
            with contextlib.suppress(Exception):
                await self.data_client.aclose()

    async def on_stream_give_up(self, reason: str) -> None:
        """
        Stream is gone for good: salvage one reading from `/data`, then open the breaker.
        """
        if self.data_client is not None and self.feed.data_url:
            try:
                payload = await self.data_client.fetch(self.feed.data_url)
            except FeedConnectionError as exc:
                self._logger.warning("Snapshot salvage failed feed=%s: %s", self.feed_key, exc)
            else:
                outcome = await self.ingest.handle_message(payload, source="data-endpoint")
                self._logger.info("Snapshot salvage feed=%s outcome=%s", self.feed_key, outcome.value)
        self.circuit_breaker.trip(f"stream gave up: {reason}")

    def status(self) -> Dict[str, Any]:
        latest = self.ingest.latest
        return {
            "feed": self.feed_key,
            "kind": self.feed.kind,
            "connection": self.connector.status() if self.connector is not None else {"state": "none"},
            "circuit": self.circuit_breaker.status(),
            "rate": self.rate_controller.status(),
            "held_candidate": self.ingest.has_pending,
            "latest_timestamp": latest.timestamp.isoformat() if latest is not None else None,
        }
