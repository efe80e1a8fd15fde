from __future__ import annotations

from typing import Any, Dict, Union

from core.domain.entities.feed_entity import FeedEntity
from core.domain.entities.multi_month_snapshot_entity import MonthSlot, MultiMonthSnapshotEntity
from core.domain.entities.single_value_snapshot_entity import SingleValueSnapshotEntity
from core.services.clock_service import iso, now_ist

Snapshot = Union[MultiMonthSnapshotEntity, SingleValueSnapshotEntity]


class SnapshotPresenter:
    """
    Render snapshots into the camelCase payloads served to dashboards.
    """

    @staticmethod
    def _slot(slot: MonthSlot) -> Dict[str, Any]:
        return {
            "label": slot.label,
            "price": slot.price,
            "rateChange": slot.rate_change,
            "rateChangePercent": slot.rate_change_percent,
        }

    @classmethod
    def present(cls, snapshot: Snapshot) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "feedKey": snapshot.feed_key,
            "timestamp": iso(snapshot.timestamp),
        }
        if snapshot.created_at is not None:
            out["createdAt"] = iso(snapshot.created_at)

        if isinstance(snapshot, MultiMonthSnapshotEntity):
            out["month1"] = cls._slot(snapshot.month1)
            out["month2"] = cls._slot(snapshot.month2)
            out["month3"] = cls._slot(snapshot.month3)
            return out

        out.update(
            {
                "value": snapshot.value,
                "rateChange": snapshot.rate_change,
                "rateChangePercent": snapshot.rate_change_percent,
                "timeSpan": snapshot.time_span,
                "source": snapshot.source,
            }
        )
        return out

    @staticmethod
    def fallback(feed: FeedEntity) -> Dict[str, Any]:
        """
        Static payload for a feed, stamped with the current time.
        """
        out: Dict[str, Any] = {"feedKey": feed.feed_key}
        out.update(feed.fallback or {})
        out["timestamp"] = iso(now_ist())
        out["isFallback"] = True
        return out
