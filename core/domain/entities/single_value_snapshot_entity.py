from __future__ import annotations

from datetime import datetime
from typing import Dict

from core.domain.entities.base_entity import MongoEntity


class SingleValueSnapshotEntity(MongoEntity):
    """
    Persisted state of a single-value feed (LME 3-month, cash settlement, spot).

    `source` records how the row was produced: "stream", "data-endpoint" or "post".
    """

    feed_key: str
    value: float
    rate_change: float = 0.0
    rate_change_percent: float = 0.0
    timestamp: datetime
    time_span: str = "Today"
    source: str = "stream"

    def quotes(self) -> Dict[str, float]:
        return {"value": self.value}
