"""
Alert Service - operator alerts for messages that failed permanently.

מפרסם אירועים ל-Redis Pub/Sub ושומר היסטוריית התראות ב-Redis.
רק PermanentFailure מגיע לכאן - שאר השגיאות נרשמות בלוג ומטופלות בתור.
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any, Optional

from app.core import redis_client
from app.core.exceptions import PermanentFailureError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.models.messaging import MessageRequest

logger = get_logger(__name__)

# ערוץ Redis Pub/Sub להתראות משלוח
ALERT_CHANNEL = "delivery_alerts"
# מפתח Redis להיסטוריית התראות - רשימה מוגבלת
_HISTORY_KEY = "delivery_alert_history"
_MAX_HISTORY_SIZE = 100


class AlertType(str, enum.Enum):
    PERMANENT_FAILURE = "permanent_failure"


async def publish_alert(
    alert_type: AlertType,
    data: dict[str, Any],
    title: Optional[str] = None,
) -> None:
    """Publish to the alert channel and append to the capped history.

    Never raises; failures are logged.
    """
    try:
        payload = {
            "type": alert_type.value,
            "title": title or alert_type.value,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        message = json.dumps(payload, ensure_ascii=False, default=str)

        redis = await redis_client.get_redis()
        await redis.publish(ALERT_CHANNEL, message)
        # LPUSH + LTRIM - החדשה ראשונה, גודל מוגבל
        await redis.lpush(_HISTORY_KEY, message)
        await redis.ltrim(_HISTORY_KEY, 0, _MAX_HISTORY_SIZE - 1)

        logger.info("Alert published", extra_data={"alert_type": alert_type.value})
    except Exception as e:
        logger.error(
            "Failed to publish alert",
            extra_data={"alert_type": alert_type.value, "error": str(e)},
            exc_info=True,
        )


async def publish_permanent_failure(
    message: MessageRequest,
    error: PermanentFailureError,
) -> None:
    """Hook for DeliveryQueueManager(on_permanent_failure=...)"""
    await publish_alert(
        AlertType.PERMANENT_FAILURE,
        data={
            "message_id": message.id,
            "platform": message.platform.value,
            "recipient": PhoneNumberValidator.mask(message.recipient),
            "template_id": message.template_id,
            "retry_count": message.retry_count,
            "error": message.last_error,
            "error_code": error.error_code.value,
        },
        title=f"Message {message.id} failed after {message.retry_count} attempts",
    )


async def get_alert_history(limit: int = 50) -> list[dict[str, Any]]:
    """Most recent alerts first"""
    try:
        redis = await redis_client.get_redis()
        raw_items = await redis.lrange(_HISTORY_KEY, 0, limit - 1)
        return [json.loads(item) for item in raw_items]
    except Exception as e:
        logger.error(
            "Failed to read alert history",
            extra_data={"error": str(e)},
            exc_info=True,
        )
        return []
