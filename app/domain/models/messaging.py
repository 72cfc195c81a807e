"""
Message request/response types and the four delivery-queue containers.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class MessagePlatform(str, enum.Enum):
    WHATSAPP = "whatsapp"
    VIBER = "viber"
    TELEGRAM = "telegram"


# סדר העדפה כשאין לאיש הקשר פלטפורמה מועדפת
PLATFORM_FALLBACK_ORDER = (
    MessagePlatform.WHATSAPP,
    MessagePlatform.VIBER,
    MessagePlatform.TELEGRAM,
)


class MessagePriority(str, enum.Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 = dispatched first"""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    MessagePriority.URGENT: 0,
    MessagePriority.HIGH: 1,
    MessagePriority.NORMAL: 2,
    MessagePriority.LOW: 3,
}


class DeliveryStatus(str, enum.Enum):
    """Adapter-reported outcome"""
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class QueueName(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_message_id(prefix: str = "msg") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class MessageRequest(BaseModel):
    """A message travelling through the delivery queue.

    ``scheduled_at`` is set only while the message waits in ``pending`` for a
    retry (``retry_count > 0``).
    """

    id: str = Field(default_factory=generate_message_id)
    platform: MessagePlatform
    recipient: str
    content: str
    template_id: Optional[str] = None
    variables: dict[str, str] = Field(default_factory=dict)
    priority: MessagePriority = MessagePriority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = Field(default_factory=_utcnow)
    scheduled_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class MessageResponse(BaseModel):
    id: str
    platform: MessagePlatform
    status: DeliveryStatus
    error: Optional[str] = None
    provider_message_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def is_success(self) -> bool:
        return self.status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)


class PlatformCounters(BaseModel):
    sent: int = 0
    failed: int = 0


def _empty_counters() -> dict[MessagePlatform, PlatformCounters]:
    return {platform: PlatformCounters() for platform in MessagePlatform}


class QueueStats(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    total_processed: int


class QueueSnapshot(BaseModel):
    """Durable form of the delivery queue - what survives a worker restart"""

    pending: list[MessageRequest] = Field(default_factory=list)
    processing: list[MessageRequest] = Field(default_factory=list)
    completed: list[MessageRequest] = Field(default_factory=list)
    failed: list[MessageRequest] = Field(default_factory=list)
    counters: dict[MessagePlatform, PlatformCounters] = Field(default_factory=_empty_counters)
    saved_at: datetime = Field(default_factory=_utcnow)

    def container(self, name: QueueName) -> list[MessageRequest]:
        return getattr(self, name.value)

    def stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self.pending),
            processing=len(self.processing),
            completed=len(self.completed),
            failed=len(self.failed),
            total_processed=len(self.completed) + len(self.failed),
        )
