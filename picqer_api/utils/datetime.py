from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=timezone.utc)
API_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_TZ_WITHOUT_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")
_EXCESS_MICROS_RE = re.compile(r"(\.\d{6})\d+")


def _normalize_datetime_string(value: str) -> str:
    normalized = value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    normalized = normalized.replace(" UTC", "+00:00")

    if _TZ_WITHOUT_COLON_RE.search(normalized):
        normalized = _TZ_WITHOUT_COLON_RE.sub(r"\1:\2", normalized)

    # fromisoformat() stops at microseconds; trim nanosecond precision.
    normalized = _EXCESS_MICROS_RE.sub(r"\1", normalized)
    return normalized


def parse_datetime(value: str) -> datetime | None:
    if not isinstance(value, str):
        return None

    normalized = _normalize_datetime_string(value)
    candidates = [normalized]
    if " " in normalized:
        candidates.append(normalized.replace(" ", "T", 1))

    for candidate in candidates:
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            continue
    return None


def coerce_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, str):
        return parse_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        timestamp = float(value)
        if timestamp > 10_000_000_000:
            timestamp /= 1000.0
        try:
            return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        except (OSError, OverflowError, ValueError):
            return None
    return None


def epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH_ZERO) // timedelta(milliseconds=1)


def format_api_datetime(value: datetime) -> str:
    """Format a timestamp the way Picqer expects ``updated_since`` filters."""

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(API_DATETIME_FORMAT)


def is_epoch_zero(value: datetime | None) -> bool:
    if value is None:
        return True
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value <= EPOCH_ZERO
