from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field

from core.domain.entities.base_entity import MongoEntity


class MonthSlot(BaseModel):
    """
    One contract month inside a reconciled snapshot.

    An empty label means the slot has never been observed.
    """

    label: str = ""
    price: float = 0.0
    rate_change: float = 0.0
    rate_change_percent: float = 0.0


class MultiMonthSnapshotEntity(MongoEntity):
    """
    Reconciled state of a 3-contract-month feed (e.g. MCX aluminium futures).

    month1 is always the nearest contract. Rows are append-only: every accepted
    ingestion produces a new document, older ones are kept as history.
    """

    feed_key: str
    timestamp: datetime
    month1: MonthSlot = Field(default_factory=MonthSlot)
    month2: MonthSlot = Field(default_factory=MonthSlot)
    month3: MonthSlot = Field(default_factory=MonthSlot)

    def slots(self) -> List[MonthSlot]:
        return [self.month1, self.month2, self.month3]

    def quotes(self) -> Dict[str, float]:
        """
        Label -> price for every observed slot.
        """
        return {s.label: s.price for s in self.slots() if s.label}
