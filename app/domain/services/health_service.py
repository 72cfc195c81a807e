"""
שירות בדיקת בריאות - בדיקות תלויות (DB, Redis, Celery broker) ומצב הפלטפורמות.

מספק שתי רמות בדיקה:
- liveness: האם התהליך חי (ללא בדיקת תלויות)
- readiness: בדיקה מקיפה של כל התלויות החיצוניות

מצב הפלטפורמות מוחזר לידיעה בלבד ולא משפיע על status - פלטפורמה כבויה
היא הגדרה, לא תקלה.
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from app.core import redis_client
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.domain.services.platforms import get_platform_adapters

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# הודעות שגיאה מסוננות - ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await redis_client.get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """Broker ping - ה-worker עצמו מחזיק את התור"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


def get_platform_statuses() -> dict[str, Any]:
    return {
        platform.value: adapter.get_status()
        for platform, adapter in get_platform_adapters().items()
    }


async def check_readiness() -> dict[str, Any]:
    """
    status: "healthy" when db, redis and celery are all "ok", else "degraded".
    platforms: enabled flag and circuit breaker state per platform.
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "celery": await _check_celery(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks, "platforms": get_platform_statuses()}
