"""
Adapter Factory - one adapter per platform, each with its own circuit breaker.

המתאמים נוצרים פעם אחת לתהליך (singleton עם נעילה) ומתאפסים בבדיקות
דרך reset_adapters().
"""
from __future__ import annotations

import threading
from typing import Optional

from app.core.circuit_breaker import get_platform_circuit_breaker
from app.core.logging import get_logger
from app.db.kv_store import KeyValueStore, SqlKeyValueStore
from app.domain.models.messaging import MessagePlatform
from app.domain.services.platforms.base_adapter import BasePlatformAdapter

logger = get_logger(__name__)

_adapters: dict[MessagePlatform, BasePlatformAdapter] | None = None
_lock = threading.Lock()


def _create_adapter(platform: MessagePlatform, store: KeyValueStore) -> BasePlatformAdapter:
    circuit_breaker = get_platform_circuit_breaker(platform.value)

    if platform == MessagePlatform.WHATSAPP:
        from app.domain.services.platforms.whatsapp_adapter import WhatsAppAdapter

        return WhatsAppAdapter(circuit_breaker=circuit_breaker)

    if platform == MessagePlatform.VIBER:
        from app.domain.services.platforms.viber_adapter import ViberAdapter

        return ViberAdapter(circuit_breaker=circuit_breaker)

    if platform == MessagePlatform.TELEGRAM:
        from app.domain.services.platforms.telegram_adapter import TelegramAdapter

        return TelegramAdapter(circuit_breaker=circuit_breaker, store=store)

    raise ValueError(f"Unknown messaging platform: {platform}")


def get_platform_adapters(
    store: Optional[KeyValueStore] = None,
) -> dict[MessagePlatform, BasePlatformAdapter]:
    """All adapters, keyed by platform. Disabled platforms are included; the queue checks is_enabled()."""
    global _adapters
    if _adapters is None:
        with _lock:
            if _adapters is None:
                kv_store = store or SqlKeyValueStore()
                _adapters = {
                    platform: _create_adapter(platform, kv_store)
                    for platform in MessagePlatform
                }
                logger.info(
                    "Platform adapters initialized",
                    extra_data={
                        "enabled": [p.value for p, a in _adapters.items() if a.is_enabled()],
                    },
                )
    return _adapters


def reset_adapters() -> None:
    """איפוס מתאמים - לשימוש בבדיקות בלבד."""
    global _adapters
    with _lock:
        _adapters = None
