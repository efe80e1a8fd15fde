"""
Pure parsing functions turning raw upstream messages into ticks.

Rate-change grammar (after stripping thousands separators):

    rate_change := NUMBER WS* "(" "(" WS* NUMBER WS* "%" WS* ")" ")"
                 | NUMBER WS* "(" WS* NUMBER WS* "%" WS* ")"
    NUMBER      := [+-]? DIGITS ("." DIGITS)?

The double-paren form is tried first. Anything else salvages the first
numeric token as the absolute change with a 0 percent, or (0, 0) when no
number is present at all.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.domain.entities.tick_entity import ContractQuote, MultiMonthTick, TickEntity
from core.domain.exceptions import TickParseError
from core.services.clock_service import now_ist, to_ist

logger = logging.getLogger(__name__)

_NUMBER = r"[-+]?\d+(?:\.\d+)?"
_DOUBLE_PAREN = re.compile(rf"^\s*({_NUMBER})\s*\(\(\s*({_NUMBER})\s*%\s*\)\)\s*$")
_SINGLE_PAREN = re.compile(rf"^\s*({_NUMBER})\s*\(\s*({_NUMBER})\s*%\s*\)\s*$")
_ANY_NUMBER = re.compile(_NUMBER)

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d %b %Y %H:%M:%S",
    "%d %B %Y %H:%M:%S",
)


def parse_rate_change(text: Any) -> Tuple[float, float]:
    """
    Parse "N (N%)" or "N ((N%))" into (rate_change, rate_change_percent).

    Never raises.
    """
    if text is None or isinstance(text, bool):
        return 0.0, 0.0
    if isinstance(text, (int, float)):
        return (float(text), 0.0) if math.isfinite(text) else (0.0, 0.0)

    s = str(text).replace(",", "")
    for pattern in (_DOUBLE_PAREN, _SINGLE_PAREN):
        m = pattern.match(s)
        if m:
            return float(m.group(1)), float(m.group(2))

    m = _ANY_NUMBER.search(s)
    if m:
        return float(m.group(0)), 0.0
    return 0.0, 0.0


def parse_price(raw: Any) -> float:
    """
    Convert an upstream price (string with thousands separators, or number) to float.

    Raises:
        TickParseError: non-numeric or non-finite input.
    """
    if isinstance(raw, bool) or raw is None:
        raise TickParseError(f"invalid price: {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        try:
            value = float(str(raw).replace(",", "").strip())
        except ValueError as exc:
            raise TickParseError(f"invalid price: {raw!r}") from exc
    if not math.isfinite(value):
        raise TickParseError(f"invalid price: {raw!r}")
    return value


def parse_timestamp(raw: Any, *, now: Optional[datetime] = None) -> datetime:
    """
    Parse an ISO-ish timestamp (or epoch seconds/millis) into an aware IST datetime.

    Unparseable input falls back to `now` (ingestion time).
    """
    fallback = to_ist(now) if now is not None else now_ist()

    if isinstance(raw, datetime):
        return to_ist(raw)

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = raw / 1000.0 if raw > 1e12 else float(raw)
        try:
            return to_ist(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return fallback

    if not isinstance(raw, str) or not raw.strip():
        return fallback

    s = raw.strip()
    try:
        return to_ist(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _TIMESTAMP_FORMATS:
        try:
            return to_ist(datetime.strptime(s, fmt))
        except ValueError:
            continue

    logger.debug("Unparseable timestamp %r, using ingestion time", raw)
    return fallback


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in payload and payload[k] is not None:
            return payload[k]
    return None


def _unwrap(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise TickParseError(f"payload is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise TickParseError(f"payload is not an object: {type(payload).__name__}")
    inner = payload.get("data")
    if "success" in payload and isinstance(inner, dict):
        return inner
    return payload


def parse_single_value_message(
    feed_key: str,
    payload: Any,
    *,
    now: Optional[datetime] = None,
) -> TickEntity:
    """
    Parse `{Value, "Rate of Change", Timestamp, "Time span"}`.

    Also accepted:
      - the same object wrapped as `{success, data: {...}}`
      - cash-settlement shapes `{cashSettlement, dateTime}` and
        `{cash_settlement, last_updated}`
    """
    data = _unwrap(payload)

    raw_value = _first(data, "Value", "value", "price", "cashSettlement", "cash_settlement")
    if raw_value is None:
        raise TickParseError(f"no value field in payload keys={sorted(data.keys())}")

    rate_change, rate_change_percent = parse_rate_change(
        _first(data, "Rate of Change", "rateChange", "rate_change")
    )

    return TickEntity(
        feed_key=feed_key,
        value=parse_price(raw_value),
        rate_change=rate_change,
        rate_change_percent=rate_change_percent,
        timestamp=parse_timestamp(_first(data, "Timestamp", "timestamp", "dateTime", "last_updated"), now=now),
        time_span=str(_first(data, "Time span", "timeSpan", "time_span") or "Today"),
    )


def parse_multi_month_message(
    feed_key: str,
    payload: Any,
    *,
    now: Optional[datetime] = None,
) -> MultiMonthTick:
    """
    Parse `{timestamp, prices: {label: {price, site_rate_change}}}`.

    Months with an unusable price are skipped; a missing or non-object
    `prices` field rejects the whole message.
    """
    data = _unwrap(payload)
    prices = data.get("prices")
    if not isinstance(prices, dict):
        raise TickParseError("multi-month payload has no `prices` object")

    contracts: List[ContractQuote] = []
    for label, entry in prices.items():
        label = str(label).strip()
        if not label or not isinstance(entry, dict):
            logger.warning("Skipping malformed month entry %r for feed=%s", label, feed_key)
            continue
        try:
            price = parse_price(entry.get("price"))
        except TickParseError as exc:
            logger.warning("Skipping month %s for feed=%s: %s", label, feed_key, exc)
            continue
        rate_change, rate_change_percent = parse_rate_change(
            _first(entry, "site_rate_change", "rate_change", "rateChange")
        )
        contracts.append(
            ContractQuote(
                label=label,
                price=price,
                rate_change=rate_change,
                rate_change_percent=rate_change_percent,
            )
        )

    return MultiMonthTick(
        feed_key=feed_key,
        timestamp=parse_timestamp(data.get("timestamp"), now=now),
        contracts=contracts,
    )
