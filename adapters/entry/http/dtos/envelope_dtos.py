from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class EnvelopeDTO(BaseModel):
    """
    Uniform response body: `{success, data?, message?, error?}`.
    """

    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
