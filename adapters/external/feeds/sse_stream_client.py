from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, List, Optional

import httpx

from core.domain.exceptions import FeedConnectionError


class SseStreamClient:
    """
    Minimal Server-Sent Events reader over httpx.

    Yields the `data` of each event (multi-line data joined with "\\n").
    Comment lines (heartbeats) and `event`/`id`/`retry` fields are ignored.
    Ends normally when the server closes the stream; raises FeedConnectionError
    on HTTP errors, non-200 responses and idle timeouts.
    """

    def __init__(
        self,
        *,
        url: str,
        connect_timeout_s: float = 10.0,
        idle_timeout_s: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(idle_timeout_s, connect=connect_timeout_s),
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        )
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def url(self) -> str:
        return self._url

    async def events(self, *, on_open: Optional[Callable[[], None]] = None) -> AsyncIterator[str]:
        try:
            async with self._client.stream("GET", self._url) as resp:
                if resp.status_code != 200:
                    raise FeedConnectionError(f"stream {self._url} answered HTTP {resp.status_code}")
                if on_open is not None:
                    on_open()

                data: List[str] = []
                async for line in resp.aiter_lines():
                    if line == "":
                        if data:
                            yield "\n".join(data)
                            data = []
                        continue
                    if line.startswith(":"):
                        continue
                    field, _, value = line.partition(":")
                    if field == "data":
                        data.append(value[1:] if value.startswith(" ") else value)

                if data:
                    yield "\n".join(data)
        except httpx.TimeoutException as exc:
            raise FeedConnectionError(f"stream {self._url} timed out: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise FeedConnectionError(f"stream {self._url} failed: {exc!r}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
