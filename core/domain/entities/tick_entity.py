from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class TickEntity(BaseModel):
    """
    One normalized single-value observation from an upstream feed.

    Ticks are never persisted as-is: they are merged into a SingleValueSnapshot
    or rejected as duplicates.
    """

    model_config = ConfigDict(frozen=True)

    feed_key: str
    value: float
    rate_change: float = 0.0
    rate_change_percent: float = 0.0
    timestamp: datetime
    time_span: str = "Today"

    def quotes(self) -> Dict[str, float]:
        return {"value": self.value}


class ContractQuote(BaseModel):
    """A single contract month as reported by a multi-month message."""

    model_config = ConfigDict(frozen=True)

    label: str
    price: float
    rate_change: float = 0.0
    rate_change_percent: float = 0.0


class MultiMonthTick(BaseModel):
    """
    Parsed multi-month message: up to three contract months, in upstream order.
    """

    model_config = ConfigDict(frozen=True)

    feed_key: str
    timestamp: datetime
    contracts: List[ContractQuote] = Field(default_factory=list)

    def quotes(self) -> Dict[str, float]:
        return {c.label: c.price for c in self.contracts}
