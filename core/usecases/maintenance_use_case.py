from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from core.domain.exceptions import PayloadValidationError
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.circuit_breaker import CircuitBreaker
from core.services.clock_service import iso, now_ist
from core.services.deadline_service import with_deadline
from core.services.rate_controller import RateController


class MaintenanceUseCase:
    """
    Admin operations on a feed's history: duplicate cleanup and retention purge.

    Both are refused while the feed's circuit breaker is open.
    """

    def __init__(
        self,
        *,
        feed_key: str,
        repository: SnapshotRepository,
        circuit_breaker: CircuitBreaker,
        rate_controller: RateController,
        default_days: int,
        max_days: int,
        timeout_s: float,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed_key = feed_key
        self._repo = repository
        self._breaker = circuit_breaker
        self._rate = rate_controller
        self._default_days = int(default_days)
        self._max_days = int(max_days)
        self._timeout_s = float(timeout_s)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def deduplicate(self) -> Dict[str, Any]:
        """
        Raises:
            CircuitOpenError: persistence is currently disabled for the feed.
            OperationTimeoutError: cleanup exceeded its deadline.
        """
        self._breaker.ensure_closed()
        removed = await with_deadline(
            self._repo.delete_exact_duplicates_keeping_first(self._feed_key),
            self._timeout_s,
            "delete_exact_duplicates_keeping_first",
        )
        self._rate.cache.clear()
        self._logger.info("Removed %s duplicate rows feed=%s", removed, self._feed_key)
        return {"removed": removed}

    async def cleanup(self, days: Optional[int] = None) -> Dict[str, Any]:
        """
        Delete rows older than `days` (default 7, capped at 30).

        Raises:
            PayloadValidationError: days < 1.
            CircuitOpenError: persistence is currently disabled for the feed.
            OperationTimeoutError: purge exceeded its deadline.
        """
        if days is None:
            days = self._default_days
        if days < 1:
            raise PayloadValidationError("days must be >= 1")
        days = min(days, self._max_days)

        self._breaker.ensure_closed()
        cutoff = now_ist() - timedelta(days=days)
        removed = await with_deadline(
            self._repo.delete_older_than(self._feed_key, cutoff),
            self._timeout_s,
            "delete_older_than",
        )
        self._rate.cache.clear()
        self._logger.info("Purged %s rows older than %s feed=%s", removed, cutoff, self._feed_key)
        return {"removed": removed, "days": days, "cutoff": iso(cutoff)}
