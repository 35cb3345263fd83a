"""
Rate limit policy — pure evaluation of per-key request ceilings.

A key carries three fixed-window ceilings (per minute, hour and day). The
counters themselves live elsewhere (see infrastructure/rate_limit_store.py);
this module only describes windows and decides whether a request that brought
the counters to a given value is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.datetime_utils import ensure_utc

Window = Literal["minute", "hour", "day"]

WINDOW_SECONDS: dict[str, int] = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

DEFAULT_PER_MINUTE = 60
DEFAULT_PER_HOUR = 1000
DEFAULT_PER_DAY = 10000


class RateLimit(BaseModel):
    """Per-credential ceilings. All three must be positive integers."""

    model_config = ConfigDict(populate_by_name=True)

    per_minute: int = Field(default=DEFAULT_PER_MINUTE, gt=0)
    per_hour: int = Field(default=DEFAULT_PER_HOUR, gt=0)
    per_day: int = Field(default=DEFAULT_PER_DAY, gt=0)

    def limit_for(self, window: Window) -> int:
        return {
            "minute": self.per_minute,
            "hour": self.per_hour,
            "day": self.per_day,
        }[window]


@dataclass(frozen=True)
class WindowCounts:
    """Requests counted in the current minute/hour/day windows."""

    minute: int = 0
    hour: int = 0
    day: int = 0

    def count_for(self, window: Window) -> int:
        return getattr(self, window)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    # The window that was exceeded (denied) or is closest to exhaustion (allowed)
    window: Optional[Window] = None

    def headers(self) -> dict[str, str]:
        """Standard ``X-RateLimit-*`` response headers."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }


def window_start(now: datetime, window: Window) -> datetime:
    """Start of the fixed *window* that contains *now* (UTC)."""
    now = ensure_utc(now)
    if window == "minute":
        return now.replace(second=0, microsecond=0)
    if window == "hour":
        return now.replace(minute=0, second=0, microsecond=0)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def window_starts(now: datetime) -> dict[str, datetime]:
    return {w: window_start(now, w) for w in WINDOW_SECONDS}


def window_reset(now: datetime, window: Window) -> datetime:
    return window_start(now, window) + timedelta(seconds=WINDOW_SECONDS[window])


def evaluate(limit: RateLimit, counts: WindowCounts, now: datetime) -> RateLimitDecision:
    """Decide whether the request that produced *counts* is within *limit*.

    *counts* already include the request being evaluated, so a count equal
    to the ceiling is still allowed.
    """
    windows: tuple[Window, ...] = ("minute", "hour", "day")

    for window in windows:
        ceiling = limit.limit_for(window)
        if counts.count_for(window) > ceiling:
            return RateLimitDecision(
                allowed=False,
                limit=ceiling,
                remaining=0,
                reset_at=window_reset(now, window),
                window=window,
            )

    tightest = min(
        windows, key=lambda w: limit.limit_for(w) - counts.count_for(w)
    )
    return RateLimitDecision(
        allowed=True,
        limit=limit.limit_for(tightest),
        remaining=max(limit.limit_for(tightest) - counts.count_for(tightest), 0),
        reset_at=window_reset(now, tightest),
        window=tightest,
    )
