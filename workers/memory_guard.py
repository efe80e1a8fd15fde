from __future__ import annotations

import asyncio
import gc
import logging
from typing import Callable, Iterable, Optional

import psutil

from core.services.rate_controller import RateController


class MemoryGuard:
    """
    Periodic resident-memory check.

    Above the ceiling every feed's response cache is dropped and a GC pass is
    requested. A safety valve, not a correctness mechanism.
    """

    def __init__(
        self,
        *,
        controllers: Callable[[], Iterable[RateController]],
        ceiling_mb: float,
        interval_s: float,
        rss_bytes: Optional[Callable[[], int]] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._controllers = controllers
        self._ceiling_bytes = int(ceiling_mb * 1024 * 1024)
        self._interval_s = float(interval_s)
        self._rss_bytes = rss_bytes or self._process_rss
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    @staticmethod
    def _process_rss() -> int:
        return int(psutil.Process().memory_info().rss)

    def start(self) -> None:
        """Start the check loop in background."""
        if self._task is None:
            self._stop.clear()
            self._task = asyncio.create_task(self._run(), name="memory-guard")

    async def stop(self) -> None:
        """Stop the check loop gracefully."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    def check_once(self) -> bool:
        """
        Returns True when the ceiling was exceeded and caches were cleared.
        """
        rss = self._rss_bytes()
        if rss <= self._ceiling_bytes:
            return False

        cleared = sum(rc.force_clear() for rc in self._controllers())
        collected = gc.collect()
        self._logger.warning(
            "RSS %.1f MB above ceiling %.1f MB: cleared %d cache entries, gc collected %d objects",
            rss / 1024 / 1024,
            self._ceiling_bytes / 1024 / 1024,
            cleared,
            collected,
        )
        return True

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_once()
            except psutil.Error as exc:
                self._logger.warning("Memory check failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass
