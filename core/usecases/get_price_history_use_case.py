from __future__ import annotations

import logging
import math
from typing import Any, Dict

from core.domain.exceptions import PayloadValidationError
from core.domain.results import Fallback, Ok, Result
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.deadline_service import with_deadline
from core.services.rate_controller import RateController
from core.services.snapshot_presenter import SnapshotPresenter


class GetPriceHistoryUseCase:
    """
    Paginated, newest-first history of a feed.
    """

    DEFAULT_LIMIT = 100
    MAX_LIMIT = 1000

    def __init__(
        self,
        *,
        feed_key: str,
        repository: SnapshotRepository,
        rate_controller: RateController,
        db_timeout_s: float,
        logger: logging.Logger | None = None,
    ) -> None:
        self._feed_key = feed_key
        self._repo = repository
        self._rate = rate_controller
        self._db_timeout_s = float(db_timeout_s)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def execute(self, *, page: int = 1, limit: int = DEFAULT_LIMIT) -> Result:
        """
        Raises:
            PayloadValidationError: page < 1 or limit < 1.
        """
        if page < 1:
            raise PayloadValidationError("page must be >= 1")
        if limit < 1:
            raise PayloadValidationError("limit must be >= 1")
        limit = min(limit, self.MAX_LIMIT)

        key = ("history", page, limit)
        cached = self._rate.cache.get(key)
        if cached is not None:
            return Ok(cached)

        try:
            total = await with_deadline(self._repo.count(self._feed_key), self._db_timeout_s, "count")
            rows = await with_deadline(
                self._repo.list_page(self._feed_key, page=page, limit=limit),
                self._db_timeout_s,
                "list_page",
            )
        except Exception as exc:
            self._logger.warning("History lookup failed feed=%s: %s", self._feed_key, exc)
            return Fallback(
                reason=f"store unavailable: {exc}",
                data={"items": [], "page": page, "limit": limit, "total": 0, "pages": 0, "isFallback": True},
            )

        data: Dict[str, Any] = {
            "items": [SnapshotPresenter.present(r) for r in rows],
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        }
        self._rate.cache.set(key, data)
        return Ok(data)
