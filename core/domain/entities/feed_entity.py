from __future__ import annotations

from typing import Any, Dict, Optional

from core.domain.entities.base_entity import MongoEntity

FEED_KIND_MULTI_MONTH = "multi_month"
FEED_KIND_SINGLE_VALUE = "single_value"


class FeedEntity(MongoEntity):
    """
    Represents a single upstream feed definition stored in MongoDB.

    One feed = one upstream stream (optional) + one dedup policy + one fallback payload.
    Feeds without `stream_url` are write-only (values arrive via POST).

    Example:
      - feed_key="3-month-mcx", kind="multi_month", stream_url="http://.../stream"
      - feed_key="spot-price", kind="single_value", stream_url=None
    """

    feed_key: str
    kind: str  # "multi_month" | "single_value"
    enabled: bool = True

    stream_url: Optional[str] = None
    data_url: Optional[str] = None  # one-shot snapshot endpoint used when the stream gives up

    # Duplicate policy
    dedup_window_s: float = 60.0
    value_tolerance: float = 0.001
    min_update_interval_s: float = 5.0

    # Served with isFallback=true when neither cache nor store has data
    fallback: Dict[str, Any] = {}

    # Feed-specific options
    config: Optional[Dict[str, Any]] = None

    @property
    def is_multi_month(self) -> bool:
        return self.kind == FEED_KIND_MULTI_MONTH
