from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ValueUpdateDTO(BaseModel):
    """
    DTO for POSTing an externally computed value to a single-value feed.

    Either `value` or `threeMonthPrice` is required; when `value` is absent the
    stored value is `threeMonthPrice + change`.
    """

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    threeMonthPrice: Optional[float] = Field(default=None, description="LME 3-month price")
    value: Optional[float] = Field(default=None, description="Explicit value, overrides the derivation")
    change: Optional[float] = Field(default=None)
    changePercent: Optional[float] = Field(default=None)
    timestamp: Optional[str] = Field(default=None, description="ISO timestamp; defaults to now")
    timeSpan: Optional[str] = Field(default=None)
    forceUpdate: bool = Field(default=False, description="Write even if identical to the latest row")
