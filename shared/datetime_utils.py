from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Union

__all__ = ["parse_to_utc", "to_iso_utc", "ensure_utc", "floor_to_hour", "hours_between", "STRICT_Z_ISO_PATTERN"]

# Strict pattern for final outputs: YYYY-MM-DDTHH:MM:SSZ
STRICT_Z_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

# Sanity window (inclusive lower bound, exclusive upper bound)
_MIN_DT = datetime(2009, 1, 1, tzinfo=timezone.utc)
_MAX_DT = datetime(2100, 1, 1, tzinfo=timezone.utc)

TimeLike = Union[str, int, float, datetime]


def _normalize_candidate(s: str) -> str:
    """
    Normalize common date-time quirks seen in scraped markup:
      - space between date and time -> 'T'
      - '+HHMM' -> '+HH:MM'
      - trailing 'Z'/'z' -> '+00:00' (fromisoformat on older interpreters rejects 'Z')
    """
    s = s.strip()
    s = re.sub(r"^(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2})", r"\1T\2", s, count=1)
    s = re.sub(r"\s*([+-]\d{2})(\d{2})$", r"\1:\2", s)
    if s[-1:] in ("Z", "z"):
        s = s[:-1] + "+00:00"
    return s


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_to_utc(value: TimeLike) -> datetime:
    """
    Parse an ISO string, RFC-2822 string, unix epoch (seconds or milliseconds) or datetime
    into an aware UTC datetime.

    Raises ValueError with one of: "missing", "unparseable", "out_of_range".
    """
    if value is None:
        raise ValueError("missing")

    if isinstance(value, datetime):
        dt = ensure_utc(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts > 1e12:  # milliseconds
            ts /= 1000.0
        try:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError("out_of_range")
    else:
        raw = str(value).strip()
        if not raw:
            raise ValueError("missing")
        if raw.isdigit():
            return parse_to_utc(int(raw))
        try:
            dt = ensure_utc(datetime.fromisoformat(_normalize_candidate(raw)))
        except ValueError:
            try:
                dt = ensure_utc(parsedate_to_datetime(raw))
            except (TypeError, ValueError):
                raise ValueError("unparseable")

    if not (_MIN_DT <= dt < _MAX_DT):
        raise ValueError("out_of_range")
    return dt


def to_iso_utc(dt: datetime) -> str:
    """Strict ISO with trailing 'Z' and no fractions."""
    dt = ensure_utc(dt).replace(microsecond=0)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def floor_to_hour(dt: datetime) -> datetime:
    return ensure_utc(dt).replace(minute=0, second=0, microsecond=0)


def hours_between(earlier: datetime, later: datetime) -> float:
    delta: timedelta = ensure_utc(later) - ensure_utc(earlier)
    return delta.total_seconds() / 3600.0
