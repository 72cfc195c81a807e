"""
Business Rule Evaluator and Emergency Detector.

Rules run in order and the first match wins:

1. contact category ``blacklisted`` → suppress
2. a response went to this recipient within the rate-limit window → suppress
3. ``emergency_only`` mode without an emergency signal → suppress
4. allow

The evaluator only reads the last-response time; the engine records it after
a successful enqueue.
"""
import enum
import json
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.core.config import settings
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.kv_store import KeyValueStore
from app.domain.models.calls import (
    AppMode,
    CallEvent,
    ContactCategory,
    ContactPriority,
    ResponseContext,
)

logger = get_logger(__name__)

_LAST_RESPONSE_PREFIX = "last_response"
_CALL_HISTORY_PREFIX = "call_history"

EMERGENCY_KEYWORDS = {
    "bg": (
        "спешно", "авария", "парене", "искри", "току що",
        "веднага", "незабавно", "опасно", "не работи",
        "наводнение", "късо съединение", "дим", "мирише",
        "гърми", "пукна", "изтече", "блокирано",
    ),
    "en": (
        "urgent", "emergency", "fire", "sparks", "burning",
        "immediately", "dangerous", "not working", "flood",
        "short circuit", "smoke", "smell", "exploded",
        "burst", "leaked", "blocked",
    ),
}


class SuppressReason(str, enum.Enum):
    BLACKLISTED = "blacklisted"
    RATE_LIMITED = "rate_limited"
    EMERGENCY_ONLY = "emergency_only"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _last_response_key(recipient: str) -> str:
    return f"{_LAST_RESPONSE_PREFIX}:{PhoneNumberValidator.normalize(recipient)}"


def _call_history_key(recipient: str) -> str:
    return f"{_CALL_HISTORY_PREFIX}:{PhoneNumberValidator.normalize(recipient)}"


def contains_emergency_keywords(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(
        keyword in lowered
        for keywords in EMERGENCY_KEYWORDS.values()
        for keyword in keywords
    )


class EmergencyDetector:
    """
    A call is an emergency when any of these holds:

    - the attached message text contains an emergency keyword
    - the contact is VIP with category ``emergency``
    - the caller rang ``threshold`` or more times inside ``window``
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        threshold: int | None = None,
        window: timedelta | None = None,
    ) -> None:
        self._store = store
        self._threshold = threshold or settings.EMERGENCY_CALL_THRESHOLD
        self._window = window or timedelta(minutes=settings.EMERGENCY_CALL_WINDOW_MINUTES)

    async def record_call(self, event: CallEvent) -> list[datetime]:
        """Append the call to the caller's history and return calls inside the window"""
        key = _call_history_key(event.phone_number)
        cutoff = event.occurred_at - self._window

        raw = await self._store.get(key)
        history = [datetime.fromisoformat(ts) for ts in json.loads(raw)] if raw else []
        recent = [ts for ts in history if ts >= cutoff]
        if event.occurred_at not in recent:
            recent.append(event.occurred_at)
        recent.sort()

        await self._store.set(
            key,
            json.dumps([ts.isoformat() for ts in recent]),
            ttl_seconds=int(self._window.total_seconds()),
        )
        return recent

    async def is_emergency(self, event: CallEvent) -> bool:
        # כל שיחה נרשמת בהיסטוריה, גם כשמילת חירום או VIP כבר מכריעים
        recent_calls = await self.record_call(event)

        if contains_emergency_keywords(event.message_text):
            return True

        contact = event.contact
        if (
            contact is not None
            and contact.priority == ContactPriority.VIP
            and contact.category == ContactCategory.EMERGENCY
        ):
            return True

        return len(recent_calls) >= self._threshold


class BusinessRuleEvaluator:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        rate_limit: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._rate_limit = rate_limit or timedelta(minutes=settings.RESPONSE_RATE_LIMIT_MINUTES)
        self._clock = clock
        self.last_suppress_reason: SuppressReason | None = None

    async def get_last_response_time(self, recipient: str) -> datetime | None:
        raw = await self._store.get(_last_response_key(recipient))
        if not raw:
            return None
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)

    async def record_response(self, recipient: str, at: datetime | None = None) -> None:
        """Last-write-wins; the key expires with the rate-limit window"""
        sent_at = at or self._clock()
        await self._store.set(
            _last_response_key(recipient),
            str(sent_at.timestamp()),
            ttl_seconds=int(self._rate_limit.total_seconds()),
        )

    async def should_respond(self, event: CallEvent, context: ResponseContext) -> bool:
        reason = await self._suppress_reason(event, context)
        self.last_suppress_reason = reason
        if reason is not None:
            logger.info(
                "Response suppressed by business rules",
                extra_data={
                    "call_id": event.id,
                    "phone": PhoneNumberValidator.mask(event.phone_number),
                    "reason": reason.value,
                },
            )
            return False
        return True

    async def _suppress_reason(
        self,
        event: CallEvent,
        context: ResponseContext,
    ) -> SuppressReason | None:
        contact = context.contact or event.contact
        if contact is not None and contact.category == ContactCategory.BLACKLISTED:
            return SuppressReason.BLACKLISTED

        last_response = await self.get_last_response_time(event.phone_number)
        if last_response is not None and last_response > self._clock() - self._rate_limit:
            return SuppressReason.RATE_LIMITED

        if context.app_mode == AppMode.EMERGENCY_ONLY and not context.has_emergency_keywords:
            return SuppressReason.EMERGENCY_ONLY

        return None
