"""Redis-backed request rate limiting."""

from typing import Optional, Tuple

import redis.asyncio as redis
import structlog

from app.core.config import get_settings

logger = structlog.get_logger()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Redis client, or None when no redis_url is configured."""
    global _redis_client

    settings = get_settings()
    if not settings.has_redis:
        return None

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis():
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


async def check_rate_limit(
    identifier: str,
    limit: Optional[int] = None,
    window: Optional[int] = None,
) -> Tuple[bool, int, int]:
    """
    Count a request against a fixed window.

    Args:
        identifier: Client key, e.g. "dscr:<ip>"
        limit: Requests allowed per window
        window: Window length in seconds

    Returns:
        (allowed, remaining, reset_seconds). Fails open when Redis is
        unavailable.
    """
    settings = get_settings()
    limit = limit or settings.rate_limit_requests
    window = window or settings.rate_limit_window

    client = await get_redis()
    if not client:
        return True, limit, window

    key = f"ratelimit:{identifier}"

    try:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()

        if ttl == -1:
            await client.expire(key, window)
            ttl = window

        return count <= limit, max(0, limit - count), ttl if ttl > 0 else window
    except Exception as e:
        logger.warning("rate_limit.redis_error", identifier=identifier, error=str(e))
        return True, limit, window
