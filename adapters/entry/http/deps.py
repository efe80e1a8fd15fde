from __future__ import annotations

from typing import Dict

from fastapi import HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from workers.feed_runtime import FeedRuntime


def get_db(request: Request) -> AsyncIOMotorDatabase:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="database not ready")
    return db


def get_feeds(request: Request) -> Dict[str, FeedRuntime]:
    return getattr(request.app.state, "feeds", None) or {}


def client_ip(request: Request) -> str:
    """
    Client address, honouring the first hop of X-Forwarded-For behind a proxy.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"
