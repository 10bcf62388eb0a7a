"""
Redis connection — lazily created async client.

Used by the Redis GEO index (user locations + ghost-mode flags).
The client is only created when GEO_BACKEND="redis".

Usage:
    from backend.app.core.redis_client import get_redis, close_redis

    client = await get_redis()
    await client.geoadd(key, (lng, lat, user_id))
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy Redis client, initialised on first use
_redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """Get or create async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client created: %s", settings.REDIS_URL)
    return _redis_client


async def ping_redis() -> bool:
    """True if Redis answers a PING."""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
