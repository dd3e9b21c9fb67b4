"""
Redis connection layer — lazily created async client.

The pre-incident buffer is the only Redis consumer. The client is owned by
the application lifespan (``main.py``) and injected into the buffer, so
tests can hand the buffer any object with the same list/pipeline API.

Usage:
    from guardpulse.app.core.redis_client import get_redis, close_redis

    client = await get_redis()
    buffer = PreIncidentBuffer(client)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Any] = None


async def get_redis(url: Optional[str] = None):
    """Get or create the async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            url or settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client created: %s", _redact(url or settings.REDIS_URL))
    return _redis_client


async def ping_redis(client: Any) -> bool:
    """True if Redis answers PING."""
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url
