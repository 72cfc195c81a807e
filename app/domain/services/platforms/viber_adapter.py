"""
Viber REST API adapter (public account ``send_message``).

Viber only reaches mobile numbers; anything else is reported as a failed
response without calling the API.
"""
from __future__ import annotations

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import AppException, ViberError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.models.messaging import MessagePlatform, MessageRequest, MessageResponse
from app.domain.services.platforms.base_adapter import BasePlatformAdapter

logger = get_logger(__name__)

VIBER_SEND_URL = "https://chatapi.viber.com/pa/send_message"


class ViberAdapter(BasePlatformAdapter):
    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        super().__init__(circuit_breaker)
        self._timeout = settings.PLATFORM_REQUEST_TIMEOUT_SECONDS

    @property
    def platform(self) -> MessagePlatform:
        return MessagePlatform.VIBER

    def is_enabled(self) -> bool:
        return settings.VIBER_ENABLED and bool(settings.VIBER_AUTH_TOKEN)

    def _build_payload(self, request: MessageRequest, receiver: str) -> dict:
        sender = {"name": settings.VIBER_BOT_NAME}
        if settings.VIBER_BOT_AVATAR:
            sender["avatar"] = settings.VIBER_BOT_AVATAR
        return {
            "receiver": receiver,
            "type": "text",
            "text": request.content,
            "sender": sender,
            "tracking_data": request.id,
        }

    async def send(self, request: MessageRequest) -> MessageResponse:
        masked = PhoneNumberValidator.mask(request.recipient)

        if not PhoneNumberValidator.is_bulgarian_mobile(request.recipient):
            logger.warning(
                "Recipient is not a mobile number, Viber send skipped",
                extra_data={"message_id": request.id, "recipient": masked},
            )
            return self.error_response(request, "Invalid Bulgarian mobile number")

        receiver = PhoneNumberValidator.normalize(request.recipient)
        payload = self._build_payload(request, receiver)
        headers = {"X-Viber-Auth-Token": settings.VIBER_AUTH_TOKEN or ""}

        async def _send() -> str:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    VIBER_SEND_URL,
                    json=payload,
                    headers=headers,
                    timeout=self._timeout,
                )
            if response.status_code != 200:
                raise ViberError.from_response("send_message", response)
            body = response.json()
            # status 0 = הצלחה; כל ערך אחר הוא שגיאת Viber
            if body.get("status") != 0:
                raise ViberError(
                    body.get("status_message") or "send_message rejected",
                    details={"status": body.get("status")},
                )
            return str(body.get("message_token", ""))

        try:
            message_token = await self._circuit_breaker.execute(_send)
        except httpx.TimeoutException:
            logger.error(
                "Viber send timed out",
                extra_data={"message_id": request.id, "recipient": masked, "timeout": self._timeout},
            )
            return self.error_response(request, f"Viber request timed out after {self._timeout}s")
        except (AppException, httpx.HTTPError, ValueError) as e:
            error = getattr(e, "message", None) or str(e)
            logger.error(
                "Viber send failed",
                extra_data={"message_id": request.id, "recipient": masked, "error": error},
            )
            return self.error_response(request, error)

        logger.info(
            "Viber message sent",
            extra_data={"message_id": request.id, "recipient": masked},
        )
        return self.success_response(request, message_token or None)
