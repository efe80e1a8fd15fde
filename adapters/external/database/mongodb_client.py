from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient

from config.settings import settings
from core.services.clock_service import IST


def get_mongo_client() -> AsyncIOMotorClient:
    """
    Build the Motor client.

    Datetimes come back timezone-aware in UTC+05:30, the offset every
    snapshot is written with.
    """
    return AsyncIOMotorClient(
        settings.MONGODB_URL,
        tz_aware=True,
        tzinfo=IST,
        serverSelectionTimeoutMS=int(settings.DB_TIMEOUT_S * 1000),
        appname=settings.APP_NAME,
    )
