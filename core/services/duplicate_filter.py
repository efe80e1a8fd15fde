from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional, Protocol

from core.domain.exceptions import DuplicateRejected
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.deadline_service import with_deadline


class Quoted(Protocol):
    timestamp: datetime

    def quotes(self) -> Dict[str, float]: ...


@dataclass(frozen=True)
class _Signature:
    timestamp: datetime
    quotes: Dict[str, float]
    remembered_at: float


def quotes_match(candidate: Mapping[str, float], stored: Mapping[str, float], tolerance: float) -> bool:
    """
    True when every label in `candidate` exists in `stored` with a price within tolerance.

    Labels missing from the candidate are ignored.
    """
    for label, price in candidate.items():
        other = stored.get(label)
        if other is None or abs(float(other) - float(price)) >= tolerance:
            return False
    return True


class DuplicateFilter:
    """
    Decide whether a parsed candidate repeats data that is already stored.

    Two stages:
      1. In-process signature of the last accepted candidate. Absorbs bursts of
         the same message without touching the database.
      2. Store query for the most recently created row within +/- `window_s`
         of the candidate timestamp, compared label-by-label with
         `value_tolerance`. Older rows in the window are ignored: a price that
         moved A -> B -> A is new data again.

    Read-only: the signature is only updated through `remember()`, which the
    caller invokes after it actually persisted the candidate.
    """

    def __init__(
        self,
        *,
        feed_key: str,
        repository: SnapshotRepository,
        window_s: float,
        value_tolerance: float,
        memory_ttl_s: float,
        db_timeout_s: float,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed_key = feed_key
        self._repo = repository
        self._window_s = float(window_s)
        self._tolerance = float(value_tolerance)
        self._memory_ttl_s = float(memory_ttl_s)
        self._db_timeout_s = float(db_timeout_s)
        self._clock = clock
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        self._last: Optional[_Signature] = None

    @property
    def window_s(self) -> float:
        return self._window_s

    def is_memory_duplicate(self, candidate: Quoted) -> bool:
        sig = self._last
        if sig is None:
            return False
        if self._clock() - sig.remembered_at >= self._memory_ttl_s:
            self._last = None
            return False
        return sig.timestamp == candidate.timestamp and quotes_match(
            candidate.quotes(), sig.quotes, self._tolerance
        )

    async def is_duplicate(self, candidate: Quoted) -> bool:
        """
        Raises:
            OperationTimeoutError: the window query exceeded the DB deadline.
        """
        if self.is_memory_duplicate(candidate):
            self._logger.debug("Memory duplicate feed=%s ts=%s", self._feed_key, candidate.timestamp)
            return True

        rows = await with_deadline(
            self._repo.find_recent_within_window(
                self._feed_key,
                center_time=candidate.timestamp,
                window_s=self._window_s,
                limit=1,
            ),
            self._db_timeout_s,
            "find_recent_within_window",
        )
        if not rows:
            return False
        return quotes_match(candidate.quotes(), rows[0].quotes(), self._tolerance)

    async def check(self, candidate: Quoted) -> None:
        """
        Raises:
            DuplicateRejected: the candidate repeats stored data.
        """
        if await self.is_duplicate(candidate):
            raise DuplicateRejected(f"feed={self._feed_key} ts={candidate.timestamp.isoformat()}")

    def remember(self, candidate: Quoted) -> None:
        self._last = _Signature(
            timestamp=candidate.timestamp,
            quotes=dict(candidate.quotes()),
            remembered_at=self._clock(),
        )

    def forget(self) -> None:
        self._last = None
