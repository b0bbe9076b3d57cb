"""Redis-backed shared counter and config store.

Holds the pieces of state that several checker processes share:
- per-retailer dynamic configuration (QPM, render behavior, session reuse)
- sliding-window rate limit counters for the budget gate
- per-day checker counters and signal dedupe keys
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

import redis.asyncio as redis

from dropwatch.config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit:"


@dataclass
class RateLimitResult:
    """Outcome of consuming one token from a rate limit window."""

    count: int
    is_limited: bool
    reset_at: float  # Unix timestamp when the oldest token leaves the window


class RedisCounterStore:
    """Shared counter/config store on top of Redis."""

    def __init__(self, redis_url: Optional[str] = None):
        """
        Initialize store.

        Args:
            redis_url: Redis connection URL (defaults to settings)
        """
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def get(self, key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        return await redis_client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        redis_client = await self._get_redis()
        await redis_client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set key only if it doesn't exist. Returns True if set."""
        redis_client = await self._get_redis()
        created = await redis_client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(created)

    async def incr_counter(self, key: str, field: str, ttl_seconds: int) -> int:
        """Increment a field of a counter hash and refresh its TTL."""
        redis_client = await self._get_redis()
        async with redis_client.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, field, 1)
            pipe.expire(key, ttl_seconds)
            value, _ = await pipe.execute()
        return int(value)

    async def rate_limit(
        self,
        key: str,
        window_seconds: int,
        limit: int,
    ) -> RateLimitResult:
        """
        Consume one token from a sliding window of `window_seconds`.

        Rejected attempts are removed again so they don't count against
        the window.

        Args:
            key: Counter key (e.g. "candqpm:walmart")
            window_seconds: Window length in seconds
            limit: Maximum tokens per window

        Returns:
            RateLimitResult
        """
        redis_client = await self._get_redis()
        rl_key = f"{RATE_LIMIT_PREFIX}{key}"
        now = time.time()
        member = f"{now:.6f}:{uuid4().hex[:8]}"

        async with redis_client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(rl_key, 0, now - window_seconds)
            pipe.zadd(rl_key, {member: now})
            pipe.zcard(rl_key)
            pipe.zrange(rl_key, 0, 0, withscores=True)
            pipe.expire(rl_key, window_seconds)
            _, _, count, oldest, _ = await pipe.execute()

        reset_at = (oldest[0][1] if oldest else now) + window_seconds

        if count > limit:
            await redis_client.zrem(rl_key, member)
            logger.debug(f"Rate limit exceeded for {key}: {count - 1}/{limit} in {window_seconds}s")
            return RateLimitResult(count=count - 1, is_limited=True, reset_at=reset_at)

        return RateLimitResult(count=count, is_limited=False, reset_at=reset_at)
