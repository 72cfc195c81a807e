"""
Telegram Bot API adapter.

Telegram cannot message a phone number directly; the bot needs the chat_id of
a user who has talked to it. The phone → chat_id mapping is kept in the
key-value store under ``telegram_chat:{normalized phone}``. A recipient that
is not a phone number (no leading "+") is used as the chat_id as-is.
"""
from __future__ import annotations

from typing import Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import AppException, TelegramError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.kv_store import KeyValueStore
from app.domain.models.messaging import MessagePlatform, MessageRequest, MessageResponse
from app.domain.services.platforms.base_adapter import BasePlatformAdapter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
_CHAT_KEY_PREFIX = "telegram_chat"


def _chat_key(phone: str) -> str:
    return f"{_CHAT_KEY_PREFIX}:{PhoneNumberValidator.normalize(phone)}"


class TelegramAdapter(BasePlatformAdapter):
    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        store: Optional[KeyValueStore] = None,
    ) -> None:
        super().__init__(circuit_breaker)
        self._store = store
        self._timeout = settings.PLATFORM_REQUEST_TIMEOUT_SECONDS

    @property
    def platform(self) -> MessagePlatform:
        return MessagePlatform.TELEGRAM

    def is_enabled(self) -> bool:
        return settings.TELEGRAM_ENABLED and bool(settings.TELEGRAM_BOT_TOKEN)

    async def register_chat(self, phone: str, chat_id: str) -> None:
        """Remember which chat belongs to a phone number (from the bot's /start flow)"""
        if self._store is None:
            raise TelegramError("no store configured for chat mappings")
        await self._store.set(_chat_key(phone), str(chat_id))
        logger.info(
            "Telegram chat registered",
            extra_data={"phone": PhoneNumberValidator.mask(phone)},
        )

    async def resolve_chat_id(self, recipient: str) -> Optional[str]:
        recipient = recipient.strip()
        if not recipient.startswith("+") and not recipient.startswith("0"):
            return recipient
        if self._store is None:
            return None
        return await self._store.get(_chat_key(recipient))

    async def send(self, request: MessageRequest) -> MessageResponse:
        masked = PhoneNumberValidator.mask(request.recipient)

        chat_id = await self.resolve_chat_id(request.recipient)
        if not chat_id:
            logger.warning(
                "No Telegram chat for recipient",
                extra_data={"message_id": request.id, "recipient": masked},
            )
            return self.error_response(request, "Telegram chat ID not found for phone number")

        url = f"{TELEGRAM_API_BASE}/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": request.content,
            "parse_mode": "HTML",
        }

        async def _send() -> str:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, timeout=self._timeout)
            if response.status_code != 200:
                raise TelegramError.from_response("sendMessage", response)
            body = response.json()
            if not body.get("ok"):
                raise TelegramError(body.get("description") or "sendMessage rejected")
            return str(body.get("result", {}).get("message_id", ""))

        try:
            provider_message_id = await self._circuit_breaker.execute(_send)
        except httpx.TimeoutException:
            logger.error(
                "Telegram send timed out",
                extra_data={"message_id": request.id, "recipient": masked, "timeout": self._timeout},
            )
            return self.error_response(request, f"Telegram request timed out after {self._timeout}s")
        except (AppException, httpx.HTTPError, ValueError) as e:
            error = getattr(e, "message", None) or str(e)
            logger.error(
                "Telegram send failed",
                extra_data={"message_id": request.id, "recipient": masked, "error": error},
            )
            return self.error_response(request, error)

        logger.info(
            "Telegram message sent",
            extra_data={"message_id": request.id, "recipient": masked},
        )
        return self.success_response(request, provider_message_id or None)
