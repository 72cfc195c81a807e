"""
Domain Models
"""
from app.domain.models.messaging import (
    DeliveryStatus,
    MessagePlatform,
    MessagePriority,
    MessageRequest,
    MessageResponse,
    PlatformCounters,
    QueueName,
    QueueSnapshot,
    QueueStats,
)
from app.domain.models.templates import (
    MessageTemplate,
    TemplateCategory,
    TemplateTrigger,
    TemplateVariable,
    TriggerCondition,
)
from app.domain.models.calls import (
    AppMode,
    AppState,
    BusinessHours,
    CallEvent,
    Contact,
    ContactCategory,
    ContactPriority,
    DaySchedule,
    ResponseContext,
    ServiceRecord,
)

__all__ = [
    "AppMode",
    "AppState",
    "BusinessHours",
    "CallEvent",
    "Contact",
    "ContactCategory",
    "ContactPriority",
    "DaySchedule",
    "DeliveryStatus",
    "MessagePlatform",
    "MessagePriority",
    "MessageRequest",
    "MessageResponse",
    "MessageTemplate",
    "PlatformCounters",
    "QueueName",
    "QueueSnapshot",
    "QueueStats",
    "ResponseContext",
    "ServiceRecord",
    "TemplateCategory",
    "TemplateTrigger",
    "TemplateVariable",
    "TriggerCondition",
]
