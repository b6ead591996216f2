"""
Redis connection management and request rate limiting
"""

import logging
import uuid
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends

from parkgo.config import settings
from parkgo.core.exceptions import RateLimitError
from parkgo.core.security import get_current_user

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: Optional[redis.Redis] = None


async def init_redis():
    """
    Initialize Redis connection.

    Redis only backs rate limiting, so an unreachable server is logged and the
    service starts without it.
    """
    global redis_client
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        await redis_client.ping()
        logger.info("Redis connection established")
    except (redis.RedisError, OSError) as e:
        logger.warning(f"Redis unavailable, rate limiting disabled: {e}")
        redis_client = None


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> Optional[redis.Redis]:
    """
    Get Redis client
    """
    return redis_client


# Sliding-window limiter; returns {limited, count}
RATE_LIMIT_SCRIPT = """
local rate_key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local timestamp = tonumber(ARGV[3])
local unique_id = ARGV[4]

local window_start = timestamp - (window * 1000)

redis.call("zremrangebyscore", rate_key, 0, window_start)

local current_count = redis.call("zcard", rate_key)

if current_count < limit then
    redis.call("zadd", rate_key, timestamp, unique_id)
    redis.call("expire", rate_key, window + 1)
    return {0, current_count + 1}
else
    return {1, current_count}
end
"""


class RedisManager:
    """
    Rate limit bookkeeping on top of the shared Redis client
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client
        self.logger = logging.getLogger(__name__)

    async def get_client(self) -> Optional[redis.Redis]:
        if self.client is None:
            self.client = await get_redis()
        return self.client

    async def is_rate_limited(
        self,
        key: str,
        limit: int,
        window: int = 60
    ) -> tuple[bool, int]:
        """
        Check if rate limit is exceeded using atomic Lua script

        Args:
            key: Rate limit key (e.g., "user:123:bookings")
            limit: Maximum number of requests
            window: Time window in seconds

        Returns:
            Tuple of (is_limited, current_count)
        """
        client = await self.get_client()
        if client is None:
            return False, 0

        try:
            now = await client.time()
            timestamp = now[0] * 1000 + now[1] // 1000
            result = await client.eval(
                RATE_LIMIT_SCRIPT,
                1,
                f"rate:{key}",
                limit,
                window,
                timestamp,
                str(uuid.uuid4())
            )
            return bool(result[0]), int(result[1])
        except (redis.RedisError, OSError) as e:
            self.logger.error(f"Error checking rate limit for {key}: {e}")
            return False, 0  # Fail open for rate limiting


# Create global Redis manager
redis_manager = RedisManager()


class RateLimiter:
    """
    Per-user rate limit dependency for API endpoints
    """

    def __init__(self, scope: str, setting_name: str, window: int = 60):
        self.scope = scope
        self.setting_name = setting_name
        self.window = window

    async def __call__(self, current_user=Depends(get_current_user)):
        await self.check(current_user.id)
        return current_user

    async def check(self, user_id) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return

        limit = getattr(settings, self.setting_name)
        key = f"user:{user_id}:{self.scope}"
        is_limited, count = await redis_manager.is_rate_limited(key, limit, self.window)
        if is_limited:
            logger.warning(
                "Rate limit exceeded",
                extra={"user_id": str(user_id), "scope": self.scope, "count": count}
            )
            raise RateLimitError(limit, self.window)
