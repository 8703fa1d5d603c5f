"""
Redis-backed rate limiting for sends and uploads.
Without Redis every action is allowed.
"""
from . import core
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window counters, one key per user and action"""

    def __init__(self, prefix: str = 'rate'):
        self.prefix = prefix

    def _key(self, user_id: int, action: str) -> str:
        return f"{self.prefix}:{action}:{user_id}"

    async def hit(self, user_id: int, action: str, limit: int, window: int) -> bool:
        """Count one action; False once the window already holds `limit` of them"""
        if not core.REDIS:
            return True

        key = self._key(user_id, action)
        try:
            count = await core.REDIS.incr(key)
            if count == 1:
                await core.REDIS.expire(key, window)
        except Exception as e:
            logger.error(f"Rate limit check failed for {key}: {e}")
            return True
        return count <= limit


rate_limiter = RateLimiter()


async def check_rate_limit(user_id: int, action: str, limit: int = 100, window: int = 3600) -> bool:
    return await rate_limiter.hit(user_id, action, limit, window)
