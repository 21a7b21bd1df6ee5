"""
Redis-backed rate limiter for invitation-issuing and destructive operations.

Counters are keyed by (operation, actor, IP, window). The limiter fails open:
when Redis is missing or erroring, requests are allowed and the problem is
logged.
"""

import logging
import time
from typing import Dict, NamedTuple, Optional

from onboarding.core.errors import RateLimited

logger = logging.getLogger(__name__)


class Limit(NamedTuple):
    per_hour: int
    per_day: int


RATE_LIMITS: Dict[str, Limit] = {
    "invite-user": Limit(20, 100),
    "resend-invitation": Limit(10, 50),
    "accept-invitation": Limit(5, 10),
    "delete-user": Limit(2, 10),
    "change-user-role": Limit(5, 20),
    "reactivate-user": Limit(5, 20),
}
DEFAULT_LIMIT = Limit(100, 500)

HOUR = 3600
DAY = 86400


class RateLimiter:
    def __init__(self, redis_client=None, enabled: bool = True):
        self.redis = redis_client
        self.enabled = enabled

    async def _hit(self, key: str, window: int) -> int:
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, window)
        return count

    async def check(self, operation: str, actor_id: Optional[str], ip: Optional[str]) -> None:
        """Count one call and raise RateLimited when either window is exhausted."""
        if not self.enabled or self.redis is None:
            return

        limit = RATE_LIMITS.get(operation, DEFAULT_LIMIT)
        now = int(time.time())
        subject = f"{actor_id or 'anonymous'}:{ip or 'unknown'}"
        hour_key = f"ratelimit:{operation}:{subject}:h:{now // HOUR}"
        day_key = f"ratelimit:{operation}:{subject}:d:{now // DAY}"

        try:
            hourly = await self._hit(hour_key, HOUR)
            daily = await self._hit(day_key, DAY)
        except Exception as e:
            logger.error("Rate limiter unavailable, allowing %s: %s", operation, e)
            return

        if hourly > limit.per_hour:
            raise RateLimited(
                f"Too many {operation} requests this hour", retry_after=HOUR - now % HOUR
            )
        if daily > limit.per_day:
            raise RateLimited(
                f"Too many {operation} requests today", retry_after=DAY - now % DAY
            )
