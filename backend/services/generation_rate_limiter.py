"""
Per-identity rate limiting for story generation requests.

slowapi guards the HTTP surface per client IP; this limiter applies per
identity so a user cannot burn through expensive generations from several
addresses. Counters use the same storage as slowapi: Redis when REDIS_URL is
set, so limits hold across workers, otherwise process memory.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

NAMESPACE = "story_generation"


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0
    remaining: int = 0


class GenerationRateLimiter:
    """Moving-window limit plus a minimum interval between requests."""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        min_interval_seconds: Optional[int] = None,
        storage: Optional[Storage] = None,
    ):
        if max_requests is None:
            max_requests = settings.generation_rate_limit_max_requests
        if window_seconds is None:
            window_seconds = settings.generation_rate_limit_window_seconds
        if min_interval_seconds is None:
            min_interval_seconds = settings.generation_rate_limit_min_interval_seconds

        self.window = parse(f"{max_requests}/{window_seconds} seconds")
        # No interval limit when the interval is zero
        self.interval = parse(f"1/{min_interval_seconds} seconds") if min_interval_seconds > 0 else None
        self.storage = storage or storage_from_string(settings.redis_url or "memory://")
        self._limiter = MovingWindowRateLimiter(self.storage)

    def _retry_after(self, item: RateLimitItem, key: str) -> int:
        reset_time, _ = self._limiter.get_window_stats(item, NAMESPACE, key)
        return max(1, math.ceil(reset_time - time.time()))

    async def check(self, key: str) -> RateLimitDecision:
        """
        Record a request for ``key`` if it is allowed.

        Rejected requests are not recorded. ``retry_after`` is rounded up to
        whole seconds.
        """
        if self.interval and not self._limiter.test(self.interval, NAMESPACE, key):
            logger.info("Generation request for %s rejected: minimum interval", key)
            return RateLimitDecision(allowed=False, retry_after=self._retry_after(self.interval, key))

        if not self._limiter.test(self.window, NAMESPACE, key):
            logger.info("Generation request for %s rejected: window full", key)
            return RateLimitDecision(allowed=False, retry_after=self._retry_after(self.window, key))

        # hit() is atomic in storage; a concurrent request may have taken the slot
        if self.interval and not self._limiter.hit(self.interval, NAMESPACE, key):
            return RateLimitDecision(allowed=False, retry_after=self._retry_after(self.interval, key))
        if not self._limiter.hit(self.window, NAMESPACE, key):
            return RateLimitDecision(allowed=False, retry_after=self._retry_after(self.window, key))

        _, remaining = self._limiter.get_window_stats(self.window, NAMESPACE, key)
        return RateLimitDecision(allowed=True, remaining=remaining)


generation_rate_limiter = GenerationRateLimiter()
