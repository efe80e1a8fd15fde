from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from adapters.external.database.feed_repository_mongodb import FeedRepositoryMongoDB
from core.usecases.admin_config_use_case import AdminConfigUseCase

from .deps import get_db
from .dtos.feed_dtos import FeedOutDTO, FeedUpsertDTO


router = APIRouter(prefix="/admin/config", tags=["admin-config"])


def _uc(db: AsyncIOMotorDatabase) -> AdminConfigUseCase:
    """
    Build AdminConfigUseCase with MongoDB repositories.
    """
    return AdminConfigUseCase(feeds_repo=FeedRepositoryMongoDB(db))


@router.post("/feeds", response_model=FeedOutDTO)
async def upsert_feed(
    dto: FeedUpsertDTO,
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> FeedOutDTO:
    """
    Create or update a feed definition.

    Identity:
      feed_key

    Takes effect on the next process start.
    """
    uc = _uc(db)
    stored = await uc.upsert_feed(dto.model_dump())
    return FeedOutDTO.model_validate(stored.model_dump())


@router.get("/feeds", response_model=List[FeedOutDTO])
async def list_feeds(
    enabled: Optional[bool] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> List[FeedOutDTO]:
    """
    List feed definitions, optionally filtered by `enabled`.
    """
    uc = _uc(db)
    items = await uc.list_feeds(enabled=enabled)
    return [FeedOutDTO.model_validate(x.model_dump()) for x in items]
