from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.domain.exceptions import CircuitOpenError, OperationTimeoutError, PayloadValidationError
from workers.feed_runtime import FeedRuntime

from . import envelope
from .deps import client_ip, get_feeds
from .dtos.value_update_dtos import ValueUpdateDTO

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["feeds"])


def _lookup(request: Request, feed: str) -> Optional[FeedRuntime]:
    return get_feeds(request).get(feed)


def _rate_limited(request: Request, rt: FeedRuntime) -> Optional[JSONResponse]:
    ip = client_ip(request)
    if rt.rate_controller.allow_request(ip):
        return None
    retry_after = rt.rate_controller.requests.retry_after(ip)
    return envelope.error(
        429,
        "Too many requests",
        detail=f"limit exceeded, retry in {retry_after:.0f}s",
        headers={"Retry-After": str(int(retry_after) + 1)},
    )


@router.get("/{feed}")
async def get_feed(
    feed: str,
    request: Request,
    latest: bool = False,
    history: bool = False,
    page: int = 1,
    limit: int = 100,
    status: bool = False,
    deduplicate: bool = False,
    cleanup: bool = False,
    days: Optional[int] = None,
) -> JSONResponse:
    """
    Latest reconciled value of a feed.

    Query switches:
      - latest=true: in-memory latest, skipping cache and store
      - history=true&page&limit: paginated persisted history
      - status=true: connection / circuit / cache diagnostics
      - deduplicate=true: remove exact duplicate rows (admin)
      - cleanup=true&days=N: retention purge (admin)
    """
    rt = _lookup(request, feed)
    if rt is None:
        return envelope.error(404, f"Unknown feed '{feed}'")

    limited = _rate_limited(request, rt)
    if limited is not None:
        return limited

    if status:
        return envelope.ok(rt.status())

    if deduplicate or cleanup:
        try:
            if deduplicate:
                return envelope.ok(await rt.maintenance.deduplicate(), message="Duplicate cleanup completed")
            return envelope.ok(await rt.maintenance.cleanup(days), message="Retention cleanup completed")
        except PayloadValidationError as exc:
            return envelope.error(400, "Invalid request parameters", detail=str(exc))
        except (CircuitOpenError, OperationTimeoutError) as exc:
            return envelope.error(503, "Maintenance unavailable", detail=str(exc))
        except Exception as exc:
            logger.exception("Maintenance failed feed=%s", feed)
            return envelope.error(500, "Maintenance failed", detail=str(exc))

    if history:
        try:
            return envelope.from_result(await rt.history.execute(page=page, limit=limit))
        except PayloadValidationError as exc:
            return envelope.error(400, "Invalid request parameters", detail=str(exc))

    return envelope.from_result(await rt.latest.execute(prefer_memory=latest))


@router.post("/{feed}")
async def post_feed(feed: str, request: Request) -> JSONResponse:
    """
    Store an externally computed value (`threeMonthPrice + change`, or `value`).

    201 when a row was written, 200 for consecutive duplicates and repeated requests.
    """
    rt = _lookup(request, feed)
    if rt is None:
        return envelope.error(404, f"Unknown feed '{feed}'")

    limited = _rate_limited(request, rt)
    if limited is not None:
        return limited

    if rt.spot_update is None:
        return envelope.error(405, f"Feed '{feed}' does not accept POST")

    try:
        body = await request.json()
    except ValueError:
        return envelope.error(400, "Request body must be JSON")
    if not isinstance(body, dict):
        return envelope.error(400, "Request body must be a JSON object")

    try:
        dto = ValueUpdateDTO.model_validate(body)
    except ValidationError as exc:
        return envelope.error(400, "Invalid numeric values provided", detail=str(exc.errors()))

    try:
        outcome = await rt.spot_update.execute(dto.model_dump(exclude_none=True))
    except PayloadValidationError as exc:
        return envelope.error(400, "Invalid request", detail=str(exc))
    except OperationTimeoutError as exc:
        return envelope.error(503, "Store unavailable", detail=str(exc))
    except Exception as exc:
        logger.exception("Value update failed feed=%s", feed)
        return envelope.error(500, "Failed to save value", detail=str(exc))

    return envelope.ok(outcome.data, message=outcome.message, status_code=201 if outcome.created else 200)
