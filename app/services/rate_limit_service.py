"""
app/services/rate_limit_service.py

Purpose: Per-user inbound message rate limiting

- Fixed window counter in Redis (INCR + EXPIRE on first hit)
- One warning per window (SET NX EX marker)
- Fails open: any Redis error allows the message
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    should_warn: bool = False
    count: int = 0


_redis: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create the shared Redis client."""
    global _redis
    if _redis is None:
        _redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
    return _redis


def set_redis(client: Optional[redis.Redis]):
    """Replaces the shared client (used by tests)."""
    global _redis
    _redis = client


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
        logger.info("Redis connection closed")


async def check_redis_health() -> bool:
    try:
        return bool(await get_redis().ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return False


def _counter_key(user_id: str) -> str:
    return f"ratelimit:{user_id}"


def _warned_key(user_id: str) -> str:
    return f"ratelimit:{user_id}:warned"


async def check_rate_limit(
    user_id: str,
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
    client: Optional[redis.Redis] = None
) -> RateLimitDecision:
    """
    Counts a message against the user's window.

    Args:
        user_id: Sender identity
        limit: Messages allowed per window (defaults to RATE_LIMIT_MESSAGES)
        window_seconds: Window length (defaults to RATE_LIMIT_WINDOW_SECONDS)
        client: Redis client override

    Returns:
        RateLimitDecision; should_warn is True only for the first
        rejected message of a window
    """
    limit = limit or settings.RATE_LIMIT_MESSAGES
    window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
    client = client or get_redis()

    try:
        count = await client.incr(_counter_key(user_id))
        if count == 1:
            await client.expire(_counter_key(user_id), window_seconds)

        if count <= limit:
            return RateLimitDecision(allowed=True, count=count)

        first_warning = await client.set(_warned_key(user_id), "1", nx=True, ex=window_seconds)
        logger.warning(f"🚦 Rate limit exceeded ({count}/{limit})")
        return RateLimitDecision(allowed=False, should_warn=bool(first_warning), count=count)

    except (RedisError, OSError) as e:
        logger.warning(f"Rate limit check failed, allowing message: {e}")
        return RateLimitDecision(allowed=True)
