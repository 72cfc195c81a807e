"""
Message template types.
"""
import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.domain.models.messaging import MessagePlatform


class TemplateCategory(str, enum.Enum):
    BUSINESS_HOURS = "business_hours"
    AFTER_HOURS = "after_hours"
    EMERGENCY = "emergency"
    NEW_CUSTOMER = "new_customer"
    EXISTING_CUSTOMER = "existing_customer"
    JOB_SITE = "job_site"
    VACATION = "vacation"
    FOLLOW_UP = "follow_up"


class TriggerCondition(str, enum.Enum):
    BUSINESS_HOURS = "business_hours"
    CONTACT_CATEGORY = "contact_category"
    EMERGENCY_KEYWORDS = "emergency_keywords"
    TIME_OF_DAY = "time_of_day"
    DAY_OF_WEEK = "day_of_week"


class TemplateVariable(BaseModel):
    key: str
    name: str = ""
    description: str = ""
    required: bool = True
    default_value: Optional[str] = None


class TemplateTrigger(BaseModel):
    """Declarative hint only - selection is driven by the fixed tier order"""
    condition: TriggerCondition
    value: Any


def _all_platforms() -> set[MessagePlatform]:
    return set(MessagePlatform)


class MessageTemplate(BaseModel):
    id: str
    name: str
    category: TemplateCategory
    language: str = "bg"
    content: str
    variables: list[TemplateVariable] = Field(default_factory=list)
    triggers: list[TemplateTrigger] = Field(default_factory=list)
    platforms: set[MessagePlatform] = Field(default_factory=_all_platforms)
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TemplateValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
