"""Timestamp normalization.

Every timestamp entering the system passes through :func:`normalize_timestamp`
and comes out as a timezone-aware UTC ``datetime`` (the canonical instant).
Epoch-millisecond integers are derived from it with :func:`epoch_ms` wherever
ordering is compared, e.g. the ingestion high-water-mark.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional


logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=30)

_WINDOW_RE = re.compile(r"^(\d+)([mh])$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_timestamp(raw: Any, now: Optional[datetime] = None) -> datetime:
    """Convert ``raw`` into a canonical UTC instant. Never raises.

    Numbers are epoch seconds. Strings are parsed as ISO-8601 date/times.
    Native ``datetime``/``date`` values are converted (naive values are taken
    as UTC). Anything missing or unparseable becomes "now".
    """
    fallback = now or utc_now()
    if raw is None:
        return fallback
    try:
        if isinstance(raw, bool):
            raise TypeError("boolean is not a timestamp")
        if isinstance(raw, datetime):
            if raw.tzinfo is None:
                return raw.replace(tzinfo=timezone.utc)
            return raw.astimezone(timezone.utc)
        if isinstance(raw, date):
            return datetime.combine(raw, time.min, tzinfo=timezone.utc)
        if isinstance(raw, (int, float)):
            if not math.isfinite(raw):
                raise ValueError(f"non-finite epoch value {raw!r}")
            return datetime.fromtimestamp(float(raw), tz=timezone.utc)
        if isinstance(raw, str):
            text = raw.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            return normalize_timestamp(parsed, fallback)
        raise TypeError(f"unsupported timestamp type {type(raw).__name__}")
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        logger.debug("Unparseable timestamp, using current time", extra={"raw": repr(raw), "error": str(exc)})
        return fallback


def epoch_ms(instant: datetime) -> int:
    return int(round(instant.timestamp() * 1000))


def from_epoch_ms(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def to_iso(instant: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    text = instant.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_time_window(token: str, default: timedelta = DEFAULT_WINDOW) -> timedelta:
    """Parse ``<N>m`` / ``<N>h`` tokens; anything else yields ``default``."""
    match = _WINDOW_RE.match((token or "").strip())
    if not match:
        logger.warning("Unrecognized time window, using default", extra={"token": token})
        return default
    value, unit = int(match.group(1)), match.group(2)
    if unit == "m":
        return timedelta(minutes=value)
    return timedelta(hours=value)
