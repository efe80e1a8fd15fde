from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from core.domain.exceptions import OperationTimeoutError

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """
    Await `awaitable` for at most `seconds`.

    Raises:
        OperationTimeoutError: the deadline passed; the underlying call is cancelled.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(operation, seconds) from exc
