"""
Layered read results.

Use cases return one of these instead of falling back inside every except
block; the HTTP layer turns them into the response envelope in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Union


@dataclass(frozen=True)
class Ok:
    data: Dict[str, Any]


@dataclass(frozen=True)
class Stale:
    """Last known good data, served because the fresh path failed."""

    data: Dict[str, Any]
    reason: str


@dataclass(frozen=True)
class Fallback:
    """Static payload, served when nothing real is available."""

    reason: str
    data: Dict[str, Any] = field(default_factory=dict)


Result = Union[Ok, Stale, Fallback]
