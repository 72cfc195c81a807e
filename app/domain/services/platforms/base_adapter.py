"""
ממשק בסיסי ל-adapter של פלטפורמת הודעות - Dependency Inversion.

תור המשלוחים תלוי רק בממשק הזה. כל מימוש (WhatsApp / Viber / Telegram)
אחראי על:
- שליחת HTTP / SDK עם timeout משלו
- circuit breaker
- נרמול נמען לפורמט הנדרש ע"י הפלטפורמה
- דיווח כשלון כ-MessageResponse עם status=failed (לא לזרוק חריגה)
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from app.core.circuit_breaker import CircuitBreaker
from app.domain.models.messaging import (
    DeliveryStatus,
    MessagePlatform,
    MessageRequest,
    MessageResponse,
)


class BasePlatformAdapter(ABC):
    """Uniform send surface for one chat platform."""

    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        self._circuit_breaker = circuit_breaker

    @property
    @abstractmethod
    def platform(self) -> MessagePlatform:
        """The platform this adapter delivers to"""

    @abstractmethod
    def is_enabled(self) -> bool:
        """Configured and switched on. Checked by the queue right before each send."""

    @abstractmethod
    async def send(self, request: MessageRequest) -> MessageResponse:
        """
        Deliver ``request.content`` to ``request.recipient``.

        Returns a response with status sent/delivered on success and failed
        otherwise. Implementations enforce their own timeout.
        """

    def get_status(self) -> dict[str, Any]:
        """Health view - enabled flag plus circuit breaker state"""
        return {
            "platform": self.platform.value,
            "enabled": self.is_enabled(),
            "circuit": self._circuit_breaker.snapshot(),
        }

    # ── עזרים משותפים ──

    def success_response(
        self,
        request: MessageRequest,
        provider_message_id: Optional[str] = None,
        status: DeliveryStatus = DeliveryStatus.SENT,
    ) -> MessageResponse:
        return MessageResponse(
            id=request.id,
            platform=self.platform,
            status=status,
            provider_message_id=provider_message_id,
        )

    def error_response(self, request: MessageRequest, error: str) -> MessageResponse:
        return MessageResponse(
            id=request.id,
            platform=self.platform,
            status=DeliveryStatus.FAILED,
            error=error,
        )
