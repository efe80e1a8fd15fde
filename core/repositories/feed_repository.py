from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from core.domain.entities.feed_entity import FeedEntity


class FeedRepository(ABC):
    """
    Abstraction for listing the feeds that should be running.
    """

    @abstractmethod
    async def list_enabled(self) -> List[FeedEntity]:
        """
        List enabled feeds.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_all(self) -> List[FeedEntity]:
        raise NotImplementedError

    @abstractmethod
    async def count_all(self) -> int:
        """
        Count all feed definitions.
        """
        raise NotImplementedError

    @abstractmethod
    async def upsert(self, feed: FeedEntity) -> None:
        """
        Insert or update a feed definition (identity: feed_key).
        """
        raise NotImplementedError

    @abstractmethod
    async def get_by_key(self, feed_key: str) -> Optional[FeedEntity]:
        raise NotImplementedError
