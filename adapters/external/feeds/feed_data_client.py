from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from core.domain.exceptions import FeedConnectionError


class FeedDataClient:
    """
    One-shot snapshot fetch from a feed's `/data` endpoint.

    Used when the stream connector has given up. One bounded retry.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 8.0,
        retries: int = 1,
        client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=5.0))
        self._retries = max(0, int(retries))
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def fetch(self, url: str) -> Any:
        last_exc: Exception | None = None
        for attempt in range(self._retries + 1):
            try:
                r = await self._client.get(url, headers={"Cache-Control": "no-cache"})
                r.raise_for_status()
                return r.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                self._logger.warning("Snapshot fetch %s failed (attempt %d): %r", url, attempt + 1, exc)
        raise FeedConnectionError(f"snapshot fetch {url} failed") from last_exc

    async def aclose(self) -> None:
        await self._client.aclose()
