"""
Redis Client - async singleton.

Holds the per-recipient rate-limit table, call history and the alert channel.
Celery tasks close it at the end of every task (each task owns its own loop).
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock: asyncio.Lock | None = None


def _mask_redis_url(url: str) -> str:
    """מסתיר סיסמה מ-REDIS_URL ללוגים (redis://:****@host:6379)."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            return url.replace(f":{parsed.password}@", ":****@")
        return url
    except ValueError:
        return "redis://****"


async def get_redis() -> aioredis.Redis:
    """מחזיר Redis client singleton (async, connection pool)."""
    global _redis_client, _init_lock
    if _redis_client is not None:
        return _redis_client

    # הנעילה נוצרת בתוך ה-loop הנוכחי - Celery פותח loop חדש לכל task
    if _init_lock is None:
        _init_lock = asyncio.Lock()

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """סגירת חיבור Redis - app shutdown וסוף כל Celery task."""
    global _redis_client, _init_lock
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
    _init_lock = None
