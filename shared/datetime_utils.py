"""
Date/time parsing and conversion utilities — framework-agnostic.

MongoDB stores datetimes as naive UTC; everything inside the service works
with timezone-aware UTC values. ``ensure_utc`` is the single place where the
two are reconciled.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as a timezone-aware UTC datetime.

    Naive datetimes (no ``tzinfo``) are assumed to already be UTC, which is
    how BSON dates come back from a client without ``tz_aware=True``.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a date/time value into a timezone-aware UTC datetime.

    Accepts:
    - ``None`` → ``None``
    - ``datetime`` → normalised with ``ensure_utc``
    - ``int`` / ``float`` → treated as Unix epoch seconds
    - ``str`` ending in ``"Z"`` → converted to ``+00:00`` before parsing
    - Any ISO 8601 string (``datetime.fromisoformat``)

    Returns:
        A timezone-aware ``datetime`` in UTC, or ``None`` if *value* is ``None``
        or cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        raw = str(value)
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(raw))
    except (ValueError, OSError, OverflowError):
        return None


def to_timestamp(value: Optional[datetime]) -> Optional[int]:
    """Unix seconds for *value*, or None."""
    if value is None:
        return None
    return int(ensure_utc(value).timestamp())
