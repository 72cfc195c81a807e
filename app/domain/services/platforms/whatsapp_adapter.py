"""
WhatsApp Cloud API adapter - sends through pywa.

ה-client נוצר בעצלות בשליחה הראשונה, כך שבדיקות ללא credentials
לא נוגעות ב-pywa בכלל.
"""
from __future__ import annotations

import asyncio

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import AppException, ServiceTimeoutError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.models.messaging import MessagePlatform, MessageRequest, MessageResponse
from app.domain.services.platforms.base_adapter import BasePlatformAdapter

logger = get_logger(__name__)


class WhatsAppAdapter(BasePlatformAdapter):
    def __init__(self, circuit_breaker: CircuitBreaker, client=None) -> None:
        super().__init__(circuit_breaker)
        self._client = client
        self._timeout = settings.PLATFORM_REQUEST_TIMEOUT_SECONDS

    def _get_client(self):
        if self._client is None:
            from pywa_async import WhatsApp as PyWaClient

            self._client = PyWaClient(
                phone_id=settings.WHATSAPP_CLOUD_API_PHONE_ID,
                token=settings.WHATSAPP_CLOUD_API_TOKEN,
            )
        return self._client

    @property
    def platform(self) -> MessagePlatform:
        return MessagePlatform.WHATSAPP

    def is_enabled(self) -> bool:
        return (
            settings.WHATSAPP_ENABLED
            and bool(settings.WHATSAPP_CLOUD_API_TOKEN)
            and bool(settings.WHATSAPP_CLOUD_API_PHONE_ID)
        )

    @staticmethod
    def normalize_phone(phone: str) -> str:
        """Cloud API expects 359888123456, without the leading +"""
        return PhoneNumberValidator.normalize(phone).lstrip("+")

    async def send(self, request: MessageRequest) -> MessageResponse:
        masked = PhoneNumberValidator.mask(request.recipient)

        if not PhoneNumberValidator.is_bulgarian_mobile(request.recipient):
            logger.warning(
                "Recipient is not a mobile number, WhatsApp send skipped",
                extra_data={"message_id": request.id, "recipient": masked},
            )
            return self.error_response(request, "Invalid Bulgarian mobile number")

        to = self.normalize_phone(request.recipient)
        client = self._get_client()

        async def _send() -> str:
            try:
                sent = await asyncio.wait_for(
                    client.send_message(to=to, text=request.content),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                raise ServiceTimeoutError("whatsapp", self._timeout)
            return str(getattr(sent, "id", "") or "")

        try:
            provider_message_id = await self._circuit_breaker.execute(_send)
        except AppException as e:
            logger.error(
                "WhatsApp send failed",
                extra_data={"message_id": request.id, "recipient": masked, "error": e.message},
            )
            return self.error_response(request, e.message)
        except Exception as e:
            # שגיאות pywa (WhatsAppError של הספרייה, שגיאות רשת) - נכשל, התור יטפל ב-retry
            logger.error(
                "WhatsApp send failed",
                extra_data={"message_id": request.id, "recipient": masked, "error": str(e)},
                exc_info=True,
            )
            return self.error_response(request, str(e) or type(e).__name__)

        logger.info(
            "WhatsApp message sent",
            extra_data={"message_id": request.id, "recipient": masked},
        )
        return self.success_response(request, provider_message_id or None)
