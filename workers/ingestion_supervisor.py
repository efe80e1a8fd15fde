from __future__ import annotations

import contextlib
import logging
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from adapters.external.database.feed_repository_mongodb import FeedRepositoryMongoDB
from adapters.external.database.mongodb_client import get_mongo_client
from adapters.external.database.multi_month_snapshot_repository_mongodb import MultiMonthSnapshotRepositoryMongoDB
from adapters.external.database.single_value_snapshot_repository_mongodb import SingleValueSnapshotRepositoryMongoDB
from config.settings import settings
from core.domain.entities.feed_entity import FEED_KIND_MULTI_MONTH, FEED_KIND_SINGLE_VALUE, FeedEntity
from workers.feed_runtime import FeedRuntime
from workers.memory_guard import MemoryGuard


def _empty_month() -> Dict[str, object]:
    return {"label": "", "price": 0.0, "rateChange": 0.0, "rateChangePercent": 0.0}


class IngestionSupervisor:
    """
    High-level supervisor for api-metal-prices.

    Responsibilities:
    - Connect to MongoDB and ensure indexes.
    - Load feed definitions from MongoDB (bootstrapping them from .env on first start).
    - Build one FeedRuntime per enabled feed and start its stream connector.
    - Run the memory guard.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._mongo_client: AsyncIOMotorClient | None = None
        self._db: AsyncIOMotorDatabase | None = None

        self._runtimes: Dict[str, FeedRuntime] = {}
        self._memory_guard: MemoryGuard | None = None

    @property
    def db(self) -> AsyncIOMotorDatabase | None:
        """
        Expose the database handle after start().
        """
        return self._db

    @property
    def feeds(self) -> Dict[str, FeedRuntime]:
        return self._runtimes

    async def start(self) -> None:
        """
        Initialize DB, ensure indexes, load feeds from Mongo, and start ingestion.
        """
        self._mongo_client = get_mongo_client()
        self._db = self._mongo_client[settings.MONGODB_DB_NAME]

        multi_repo = MultiMonthSnapshotRepositoryMongoDB(self._db)
        single_repo = SingleValueSnapshotRepositoryMongoDB(self._db)
        await multi_repo.ensure_indexes()
        await single_repo.ensure_indexes()

        feeds_repo = FeedRepositoryMongoDB(self._db)
        await feeds_repo.ensure_indexes()

        total_feeds = await feeds_repo.count_all()
        if total_feeds == 0:
            await self._bootstrap_from_env(feeds_repo=feeds_repo)
            total_feeds = await feeds_repo.count_all()
            self._logger.info("Bootstrapped feeds from .env. total=%s", total_feeds)

        feeds = await feeds_repo.list_enabled()
        if not feeds:
            self._logger.error("No enabled feeds found in MongoDB.")
            return

        for feed in feeds:
            repo = multi_repo if feed.is_multi_month else single_repo
            self._runtimes[feed.feed_key] = FeedRuntime.build(feed=feed, repository=repo)

        for rt in self._runtimes.values():
            await rt.start()

        self._memory_guard = MemoryGuard(
            controllers=lambda: [rt.rate_controller for rt in self._runtimes.values()],
            ceiling_mb=settings.MEMORY_CEILING_MB,
            interval_s=settings.MEMORY_CHECK_INTERVAL_S,
        )
        self._memory_guard.start()

        streamed = sum(1 for rt in self._runtimes.values() if rt.connector is not None)
        self._logger.info("All feeds started. total=%s streamed=%s", len(self._runtimes), streamed)

    async def stop(self) -> None:
        """
        Stop the memory guard, stream connectors, and close the Mongo client.
        """
        if self._memory_guard is not None:
            with contextlib.suppress(Exception):
                await self._memory_guard.stop()
            self._memory_guard = None

        for rt in self._runtimes.values():
            await rt.stop()
        self._runtimes = {}

        if self._mongo_client:
            self._mongo_client.close()

    async def _bootstrap_from_env(self, *, feeds_repo: FeedRepositoryMongoDB) -> None:
        """
        Create the default feeds from .env only if the feeds collection is empty.

        After bootstrap, changes are made through /admin/config/feeds (or Mongo directly).
        """
        for feed in self.default_feeds():
            await feeds_repo.upsert(feed)

    @staticmethod
    def default_feeds() -> List[FeedEntity]:
        return [
            FeedEntity(
                feed_key="3-month-mcx",
                kind=FEED_KIND_MULTI_MONTH,
                stream_url=settings.BOOTSTRAP_MCX_STREAM_URL or None,
                dedup_window_s=settings.MULTI_MONTH_DEDUP_WINDOW_S,
                value_tolerance=settings.GENERAL_VALUE_TOLERANCE,
                min_update_interval_s=settings.MIN_UPDATE_INTERVAL_S,
                fallback={"month1": _empty_month(), "month2": _empty_month(), "month3": _empty_month()},
            ),
            FeedEntity(
                feed_key="price",
                kind=FEED_KIND_SINGLE_VALUE,
                stream_url=settings.BOOTSTRAP_LME_STREAM_URL or None,
                data_url=settings.BOOTSTRAP_LME_DATA_URL or None,
                dedup_window_s=settings.SINGLE_VALUE_DEDUP_WINDOW_S,
                value_tolerance=settings.MIN_SIGNIFICANT_CHANGE,
                min_update_interval_s=settings.MIN_UPDATE_INTERVAL_S,
                fallback={"value": 2383.15, "rateChange": -5.45, "rateChangePercent": -0.23, "timeSpan": "Today"},
            ),
            FeedEntity(
                feed_key="cash-settlement",
                kind=FEED_KIND_SINGLE_VALUE,
                stream_url=settings.BOOTSTRAP_CASH_SETTLEMENT_STREAM_URL or None,
                dedup_window_s=settings.SINGLE_VALUE_DEDUP_WINDOW_S,
                value_tolerance=settings.MIN_SIGNIFICANT_CHANGE,
                min_update_interval_s=settings.MIN_UPDATE_INTERVAL_S,
                fallback={"value": 0.0, "rateChange": 0.0, "rateChangePercent": 0.0, "timeSpan": "Today"},
            ),
            FeedEntity(
                feed_key="spot-price",
                kind=FEED_KIND_SINGLE_VALUE,
                dedup_window_s=settings.SINGLE_VALUE_DEDUP_WINDOW_S,
                value_tolerance=settings.SPOT_DUPLICATE_TOLERANCE,
                min_update_interval_s=settings.MIN_UPDATE_INTERVAL_S,
                fallback={"value": 2377.70, "rateChange": -5.45, "rateChangePercent": -0.23, "timeSpan": "Today"},
            ),
        ]
