# core/domain/entities/base_entity.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict

from core.services.clock_service import iso

E = TypeVar("E", bound="MongoEntity")


class MongoEntity(BaseModel):
    """
    Base for documents stored in MongoDB.

    - `_id` is exposed as a string `id`.
    - `created_at` is the ingestion wall-clock time in UTC+05:30; snapshots are
      append-only, so it never changes after insert. Retention purges use it.
    - Unknown keys are kept, so rows written by older versions still load.
    """

    id: Optional[str] = None  # maps _id
    created_at: Optional[datetime] = None
    created_at_iso: Optional[str] = None
    updated_at_iso: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @classmethod
    def from_mongo(cls: Type[E], doc: Optional[dict[str, Any]]) -> Optional[E]:
        """
        Decode a raw MongoDB document (may include `_id`); None for an empty doc.
        """
        if not doc:
            return None
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def to_mongo(self) -> dict[str, Any]:
        """
        Document for insert/update. `id` is dropped; Mongo assigns `_id` on insert.
        """
        data = self.model_dump(mode="python", exclude_none=True)
        data.pop("id", None)
        return data

    def stamped(self: E, now: datetime) -> E:
        """
        Copy carrying `now` as its insertion time.
        """
        return self.model_copy(update={"created_at": now, "created_at_iso": iso(now)})
