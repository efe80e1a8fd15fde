"""
The single place where layered Results become HTTP responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.domain.results import Fallback, Ok, Result, Stale

from .dtos.envelope_dtos import EnvelopeDTO


def _respond(
    status_code: int,
    *,
    success: bool,
    data: Any = None,
    message: Optional[str] = None,
    error: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = EnvelopeDTO(success=success, data=data, message=message, error=error)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


def from_result(result: Result) -> JSONResponse:
    """
    Ok -> data; Stale -> data + isStale; Fallback -> static data + isFallback.

    All three are HTTP 200: dashboards always get something to render.
    """
    if isinstance(result, Ok):
        return _respond(200, success=True, data=result.data)
    if isinstance(result, Stale):
        return _respond(
            200,
            success=True,
            data={**result.data, "isStale": True},
            message="Using last known data",
            error=result.reason,
        )
    if isinstance(result, Fallback):
        return _respond(
            200,
            success=True,
            data={**result.data, "isFallback": True},
            message="Using fallback data",
            error=result.reason,
        )
    raise TypeError(f"unsupported result type: {type(result).__name__}")


def ok(data: Any, *, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    return _respond(status_code, success=True, data=data, message=message)


def error(
    status_code: int,
    message: str,
    *,
    detail: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return _respond(status_code, success=False, message=message, error=detail, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Bad query params / bodies answer 400 with the envelope instead of FastAPI's 422.
    """
    return error(400, "Invalid request parameters", detail=str(exc.errors()))
