from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase

from core.domain.entities.base_entity import MongoEntity
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.clock_service import now_ist

S = TypeVar("S", bound=MongoEntity)


class SnapshotRepositoryMongoDB(SnapshotRepository[S], Generic[S]):
    """
    Shared MongoDB implementation for append-only snapshot collections.

    Subclasses set:
      - COLLECTION: collection name
      - ENTITY: entity class used to decode documents
      - VALUE_FIELDS: fields that, together with `timestamp`, define an exact duplicate
    """

    COLLECTION: str = ""
    ENTITY: Type[S]
    VALUE_FIELDS: Tuple[str, ...] = ()

    DELETE_CHUNK = 100
    WINDOW_SCAN_LIMIT = 50

    def __init__(self, db: AsyncIOMotorDatabase, *, logger: logging.Logger | None = None):
        self._db = db
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def ensure_indexes(self) -> None:
        col = self._db[self.COLLECTION]
        # Latest / prior snapshot lookup
        await col.create_index([("feed_key", 1), ("created_at", -1)])
        # Dedup window queries and history paging
        await col.create_index([("feed_key", 1), ("timestamp", -1)])

    def _decode(self, doc: Optional[Dict[str, Any]]) -> Optional[S]:
        return self.ENTITY.from_mongo(doc) if doc else None

    async def find_latest(self, feed_key: str) -> Optional[S]:
        col = self._db[self.COLLECTION]
        doc = await col.find_one({"feed_key": feed_key}, sort=[("created_at", -1), ("_id", -1)])
        return self._decode(doc)

    async def find_recent_within_window(
        self,
        feed_key: str,
        *,
        center_time: datetime,
        window_s: float,
        limit: Optional[int] = None,
    ) -> List[S]:
        col = self._db[self.COLLECTION]
        delta = timedelta(seconds=window_s)
        query: Dict[str, Any] = {
            "feed_key": feed_key,
            "timestamp": {"$gte": center_time - delta, "$lte": center_time + delta},
        }
        n = min(limit, self.WINDOW_SCAN_LIMIT) if limit else self.WINDOW_SCAN_LIMIT

        cur = col.find(query).sort([("created_at", -1), ("_id", -1)]).limit(n)
        docs = await cur.to_list(length=n)
        return [x for x in (self._decode(d) for d in docs) if x is not None]

    async def append(self, snapshot: S) -> S:
        now = now_ist()
        stored = snapshot.stamped(now)

        col = self._db[self.COLLECTION]
        res = await col.insert_one(stored.to_mongo())
        stored.id = str(res.inserted_id)
        return stored

    async def delete_older_than(self, feed_key: str, cutoff: datetime) -> int:
        col = self._db[self.COLLECTION]
        res = await col.delete_many({"feed_key": feed_key, "created_at": {"$lt": cutoff}})
        return int(res.deleted_count)

    async def delete_exact_duplicates_keeping_first(self, feed_key: str) -> int:
        col = self._db[self.COLLECTION]
        group_key: Dict[str, Any] = {"timestamp": "$timestamp"}
        for field in self.VALUE_FIELDS:
            group_key[field.replace(".", "_")] = f"${field}"

        pipeline = [
            {"$match": {"feed_key": feed_key}},
            {"$sort": {"created_at": 1, "_id": 1}},
            {"$group": {"_id": group_key, "ids": {"$push": "$_id"}, "n": {"$sum": 1}}},
            {"$match": {"n": {"$gt": 1}}},
        ]

        extras: List[Any] = []
        async for group in col.aggregate(pipeline, allowDiskUse=True):
            extras.extend(group["ids"][1:])

        removed = 0
        for i in range(0, len(extras), self.DELETE_CHUNK):
            chunk = extras[i : i + self.DELETE_CHUNK]
            res = await col.delete_many({"_id": {"$in": chunk}})
            removed += int(res.deleted_count)

        if removed:
            self._logger.info("Deleted %s exact duplicates from %s feed=%s", removed, self.COLLECTION, feed_key)
        return removed

    async def count(self, feed_key: str) -> int:
        col = self._db[self.COLLECTION]
        return int(await col.count_documents({"feed_key": feed_key}))

    async def list_page(self, feed_key: str, *, page: int, limit: int) -> List[S]:
        col = self._db[self.COLLECTION]
        cur = (
            col.find({"feed_key": feed_key})
            .sort([("timestamp", -1), ("created_at", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        docs = await cur.to_list(length=limit)
        return [x for x in (self._decode(d) for d in docs) if x is not None]
