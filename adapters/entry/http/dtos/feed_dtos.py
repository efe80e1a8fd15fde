from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from core.domain.entities.feed_entity import FEED_KIND_MULTI_MONTH, FEED_KIND_SINGLE_VALUE


class FeedUpsertDTO(BaseModel):
    """
    DTO for creating or updating a feed definition.

    Identity field: feed_key (also the URL segment, e.g. GET /api/3-month-mcx).

    Notes:
    - kind="multi_month" feeds carry three contract months and cannot be POSTed to.
    - Leave stream_url empty for write-only feeds fed by POST.
    """

    feed_key: str = Field(..., description='e.g. "3-month-mcx" or "spot-price"')
    kind: str = Field(..., description="multi_month | single_value")
    enabled: bool = Field(default=True)

    stream_url: Optional[str] = Field(default=None, description="SSE endpoint")
    data_url: Optional[str] = Field(default=None, description="One-shot snapshot endpoint")

    dedup_window_s: float = Field(default=60.0, gt=0)
    value_tolerance: float = Field(default=0.001, gt=0)
    min_update_interval_s: float = Field(default=5.0, ge=0)

    fallback: Dict[str, Any] = Field(default_factory=dict, description="Static payload served with isFallback")
    config: Optional[Dict[str, Any]] = Field(default=None, description="Feed-specific config")

    @field_validator("feed_key")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in (FEED_KIND_MULTI_MONTH, FEED_KIND_SINGLE_VALUE):
            raise ValueError("kind must be multi_month or single_value")
        return v

    @field_validator("stream_url", "data_url")
    @classmethod
    def _normalize_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class FeedOutDTO(BaseModel):
    """
    DTO returned by API for feed definitions.
    """

    feed_key: str
    kind: str
    enabled: bool

    stream_url: Optional[str] = None
    data_url: Optional[str] = None

    dedup_window_s: float
    value_tolerance: float
    min_update_interval_s: float

    fallback: Dict[str, Any] = {}
    config: Optional[Dict[str, Any]] = None
