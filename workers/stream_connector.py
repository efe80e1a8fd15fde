from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

from core.domain.exceptions import FeedConnectionError


class EventSource(Protocol):
    def events(self, *, on_open: Optional[Callable[[], None]] = None) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class ConnectorState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class StreamConnector:
    """
    Owns the long-lived push connection of one feed.

    Lifecycle:
      - init():      reset state (called once by the constructor)
      - start():     tear down any live connection, then connect in a background task
      - stop():      cancel the task; the event source stays usable
      - reconnect(): reset the attempt counter and start again
      - aclose():    stop and release the event source for good

    Connection state (task handle, attempt counter, status) is plain mutable
    state on this object. It is only touched from the event loop, and start()
    always cancels the previous task before creating a new one, so at most one
    connection per feed is ever live.

    On error or close the connector waits `min(base * 1.5 ** (n - 1), max_delay)`
    before reconnect n. After `max_attempts` failed reconnects it marks itself
    degraded, calls `on_give_up` and stops trying.
    """

    def __init__(
        self,
        *,
        feed_key: str,
        source: EventSource,
        handler: Callable[[str], Awaitable[Any]],
        base_delay_s: float,
        max_delay_s: float,
        max_attempts: int,
        on_give_up: Optional[Callable[[str], Awaitable[None]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed_key = feed_key
        self._source = source
        self._handler = handler
        self._base_delay_s = float(base_delay_s)
        self._max_delay_s = float(max_delay_s)
        self._max_attempts = int(max_attempts)
        self._on_give_up = on_give_up
        self._sleep = sleep
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self.init()

    def init(self) -> None:
        self._state = ConnectorState.IDLE
        self._attempts = 0
        self._task: asyncio.Task | None = None
        self._last_error: Optional[str] = None
        self._last_message_at: Optional[float] = None
        self._messages = 0

    @property
    def state(self) -> ConnectorState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect number `attempt` (1-based)."""
        return min(self._base_delay_s * 1.5 ** max(0, attempt - 1), self._max_delay_s)

    async def start(self) -> None:
        await self._teardown()
        self._state = ConnectorState.CONNECTING
        self._task = asyncio.create_task(self._run(), name=f"stream-{self._feed_key}")

    async def stop(self) -> None:
        await self._teardown()
        self._state = ConnectorState.STOPPED
        self._logger.info("Stream connector stopped feed=%s", self._feed_key)

    async def reconnect(self) -> None:
        self._attempts = 0
        await self.start()

    async def aclose(self) -> None:
        await self.stop()
        with contextlib.suppress(Exception):
            await self._source.aclose()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "messages": self._messages,
            "last_error": self._last_error,
            "seconds_since_message": (
                round(time.monotonic() - self._last_message_at, 1) if self._last_message_at is not None else None
            ),
        }

    # --- Internal ---

    async def _teardown(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _on_open(self) -> None:
        if self._attempts:
            self._logger.info("Stream reconnected feed=%s after %d attempts", self._feed_key, self._attempts)
        else:
            self._logger.info("Stream open feed=%s", self._feed_key)
        self._attempts = 0
        self._state = ConnectorState.OPEN

    async def _run(self) -> None:
        while True:
            try:
                async for data in self._source.events(on_open=self._on_open):
                    self._messages += 1
                    self._last_message_at = time.monotonic()
                    try:
                        await self._handler(data)
                    except Exception as exc:
                        self._logger.exception("Message handler failed feed=%s: %s", self._feed_key, exc)
                reason = "stream closed by server"
            except FeedConnectionError as exc:
                reason = str(exc)
            except Exception as exc:
                self._logger.exception("Unexpected stream failure feed=%s", self._feed_key)
                reason = repr(exc)

            self._last_error = reason
            self._attempts += 1
            if self._attempts > self._max_attempts:
                await self._give_up(reason)
                return

            delay = self.backoff_delay(self._attempts)
            self._state = ConnectorState.RECONNECTING
            self._logger.warning(
                "Stream lost feed=%s (%s). Reconnect %d/%d in %.1fs",
                self._feed_key,
                reason,
                self._attempts,
                self._max_attempts,
                delay,
            )
            await self._sleep(delay)
            self._state = ConnectorState.CONNECTING

    async def _give_up(self, reason: str) -> None:
        self._state = ConnectorState.DEGRADED
        self._logger.error(
            "Giving up on stream feed=%s after %d reconnect attempts. Last error: %s",
            self._feed_key,
            self._max_attempts,
            reason,
        )
        if self._on_give_up is None:
            return
        try:
            await self._on_give_up(reason)
        except Exception as exc:
            self._logger.exception("Give-up hook failed feed=%s: %s", self._feed_key, exc)
