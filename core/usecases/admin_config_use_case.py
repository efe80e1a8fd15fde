from __future__ import annotations

from typing import List, Optional

from core.domain.entities.feed_entity import FeedEntity
from core.repositories.feed_repository import FeedRepository


class AdminConfigUseCase:
    """
    Use case for managing feed definitions.

    Changes are stored in MongoDB and picked up on the next process start.
    """

    def __init__(self, *, feeds_repo: FeedRepository) -> None:
        self._feeds_repo = feeds_repo

    async def upsert_feed(self, dto: dict) -> FeedEntity:
        """
        Create or update a feed definition (identity: feed_key).
        """
        ent = FeedEntity(**dto)
        await self._feeds_repo.upsert(ent)
        stored = await self._feeds_repo.get_by_key(ent.feed_key)
        return stored or ent

    async def list_feeds(self, *, enabled: Optional[bool] = None) -> List[FeedEntity]:
        """
        List feeds, optionally filtering by enabled flag.
        """
        if enabled is True:
            return await self._feeds_repo.list_enabled()

        items = await self._feeds_repo.list_all()
        if enabled is False:
            return [f for f in items if not f.enabled]
        return items
