from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from core.domain.entities.base_entity import MongoEntity

S = TypeVar("S", bound=MongoEntity)


class SnapshotRepository(ABC, Generic[S]):
    """
    Append-only store of reconciled snapshots for one kind of feed.

    The only in-place changes allowed are the maintenance operations
    (duplicate cleanup and retention purge).
    """

    @abstractmethod
    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_latest(self, feed_key: str) -> Optional[S]:
        """
        Most recently created snapshot for the feed, or None.
        """
        raise NotImplementedError

    @abstractmethod
    async def find_recent_within_window(
        self,
        feed_key: str,
        *,
        center_time: datetime,
        window_s: float,
        limit: Optional[int] = None,
    ) -> List[S]:
        """
        Snapshots whose timestamp lies in [center_time - window, center_time + window],
        most recently created first.

        No value filtering happens here. Callers compare values against the
        newest row only, so an older row never masks a price that changed back.
        """
        raise NotImplementedError

    @abstractmethod
    async def append(self, snapshot: S) -> S:
        """
        Insert a new snapshot and return it with `id` and `created_at` set.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_older_than(self, feed_key: str, cutoff: datetime) -> int:
        raise NotImplementedError

    @abstractmethod
    async def delete_exact_duplicates_keeping_first(self, feed_key: str) -> int:
        """
        Remove rows identical in timestamp and values, keeping the earliest created.
        """
        raise NotImplementedError

    @abstractmethod
    async def count(self, feed_key: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def list_page(self, feed_key: str, *, page: int, limit: int) -> List[S]:
        """
        Newest-first page of history. `page` is 1-based.
        """
        raise NotImplementedError
