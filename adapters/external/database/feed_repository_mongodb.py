from __future__ import annotations

from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from core.domain.entities.feed_entity import FeedEntity
from core.repositories.feed_repository import FeedRepository
from core.services.clock_service import iso, now_ist


class FeedRepositoryMongoDB(FeedRepository):
    """
    MongoDB repository for feed definitions.

    A feed identity is its `feed_key`.
    """

    COLLECTION = "feeds"

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db

    async def ensure_indexes(self) -> None:
        """
        Ensure uniqueness and efficient listing.
        """
        col = self._db[self.COLLECTION]
        await col.create_index([("feed_key", 1)], unique=True)
        await col.create_index([("enabled", 1)])

    async def list_enabled(self) -> List[FeedEntity]:
        col = self._db[self.COLLECTION]
        docs = await col.find({"enabled": True}).to_list(length=1_000)
        out = [FeedEntity.from_mongo(d) for d in docs]
        return [x for x in out if x is not None]

    async def list_all(self) -> List[FeedEntity]:
        col = self._db[self.COLLECTION]
        docs = await col.find({}).sort("feed_key", 1).to_list(length=1_000)
        out = [FeedEntity.from_mongo(d) for d in docs]
        return [x for x in out if x is not None]

    async def count_all(self) -> int:
        col = self._db[self.COLLECTION]
        return int(await col.count_documents({}))

    async def upsert(self, feed: FeedEntity) -> None:
        col = self._db[self.COLLECTION]
        now = now_ist()
        payload = feed.to_mongo()
        payload.pop("created_at", None)
        payload.pop("created_at_iso", None)
        payload["updated_at_iso"] = iso(now)
        await col.update_one(
            {"feed_key": feed.feed_key},
            {"$set": payload, "$setOnInsert": {"created_at": now, "created_at_iso": iso(now)}},
            upsert=True,
        )

    async def get_by_key(self, feed_key: str) -> Optional[FeedEntity]:
        col = self._db[self.COLLECTION]
        doc = await col.find_one({"feed_key": str(feed_key)})
        return FeedEntity.from_mongo(doc) if doc else None
