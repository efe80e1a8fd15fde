from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from core.domain.exceptions import CircuitOpenError


class CircuitBreaker:
    """
    Per-feed circuit breaker guarding persistence.

    Tripped on persistence timeouts and when a stream connector gives up.
    While open, ingestion skips writes instead of piling up doomed DB calls.
    The breaker closes by itself once `reset_after_s` has elapsed.
    """

    def __init__(
        self,
        *,
        feed_key: str,
        reset_after_s: float,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed_key = feed_key
        self._reset_after_s = float(reset_after_s)
        self._clock = clock
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._opened_at: Optional[float] = None
        self._reason: Optional[str] = None

    def trip(self, reason: str) -> None:
        if self._opened_at is None:
            self._logger.warning("Circuit opened for feed=%s: %s", self._feed_key, reason)
        self._opened_at = self._clock()
        self._reason = reason

    def reset(self) -> None:
        if self._opened_at is not None:
            self._logger.info("Circuit closed for feed=%s", self._feed_key)
        self._opened_at = None
        self._reason = None

    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self._clock() - self._opened_at >= self._reset_after_s:
            self.reset()
            return False
        return True

    def ensure_closed(self) -> None:
        if self.is_open():
            raise CircuitOpenError(f"circuit open for feed={self._feed_key}: {self._reason}")

    def status(self) -> Dict[str, object]:
        is_open = self.is_open()
        remaining = 0.0
        if is_open and self._opened_at is not None:
            remaining = max(0.0, self._reset_after_s - (self._clock() - self._opened_at))
        return {"open": is_open, "reason": self._reason, "resets_in_s": round(remaining, 1)}
