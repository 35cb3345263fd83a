"""Redis-backed fixed-window request counters for API key rate limits.

One counter per (key, window, window start). Every hit increments all three
windows in a single pipeline and pins each counter's expiry to the end of its
window, so stale windows disappear on their own.

Without Redis the store reports zero counts: limits are not enforced, but
authentication keeps working.
"""

from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis

from shared.logging import get_logger
from shared.rate_limit import WINDOW_SECONDS, WindowCounts, window_reset, window_start

log = get_logger(__name__)


class RedisRateLimitStore:
    def __init__(
        self, redis_client: Optional[aioredis.Redis], namespace: str = "ratelimit"
    ) -> None:
        self._redis = redis_client
        self.namespace = namespace

    def _key(self, subject: str, window: str, now: datetime) -> str:
        start = int(window_start(now, window).timestamp())
        return f"{self.namespace}:{subject}:{window}:{start}"

    async def hit(self, subject: str, now: datetime) -> WindowCounts:
        """Count one request for *subject* and return the updated window counts."""
        if self._redis is None:
            return WindowCounts()
        try:
            pipe = self._redis.pipeline()
            for window in WINDOW_SECONDS:
                key = self._key(subject, window, now)
                pipe.incr(key)
                pipe.expireat(key, int(window_reset(now, window).timestamp()))
            results = await pipe.execute()
        except Exception as e:
            log.warning("rate_limit_store_error", subject=subject, error=str(e))
            return WindowCounts()

        # results alternate INCR value / EXPIREAT flag
        minute, hour, day = (int(v) for v in results[0::2])
        return WindowCounts(minute=minute, hour=hour, day=day)

    async def peek(self, subject: str, now: datetime) -> WindowCounts:
        """Current counts for *subject* without counting a request."""
        if self._redis is None:
            return WindowCounts()
        try:
            values = await self._redis.mget(
                [self._key(subject, window, now) for window in WINDOW_SECONDS]
            )
        except Exception as e:
            log.warning("rate_limit_store_error", subject=subject, error=str(e))
            return WindowCounts()
        minute, hour, day = (int(v) if v is not None else 0 for v in values)
        return WindowCounts(minute=minute, hour=hour, day=day)
