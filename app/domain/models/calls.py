"""
Call events, contacts and the context the response pipeline decides on.
"""
import enum
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from app.domain.models.messaging import MessagePlatform


class ContactCategory(str, enum.Enum):
    EXISTING_CUSTOMER = "existing_customer"
    NEW_PROSPECT = "new_prospect"
    SUPPLIER = "supplier"
    EMERGENCY = "emergency"
    PERSONAL = "personal"
    BLACKLISTED = "blacklisted"


class ContactPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VIP = "vip"


class AppMode(str, enum.Enum):
    NORMAL = "normal"
    JOB_SITE = "job_site"
    VACATION = "vacation"
    EMERGENCY_ONLY = "emergency_only"


class ServiceRecord(BaseModel):
    performed_on: date
    description: str


class Contact(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None
    category: ContactCategory = ContactCategory.NEW_PROSPECT
    priority: ContactPriority = ContactPriority.MEDIUM
    preferred_platform: Optional[MessagePlatform] = None
    service_history: list[ServiceRecord] = Field(default_factory=list)


class DaySchedule(BaseModel):
    """Working window for one weekday, HH:MM strings in the schedule timezone"""
    start: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(pattern=r"^([01]\d|2[0-4]):[0-5]\d$")


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _default_schedule() -> dict[str, DaySchedule]:
    schedule = {day: DaySchedule(start="08:00", end="18:00") for day in WEEKDAYS[:5]}
    schedule["saturday"] = DaySchedule(start="09:00", end="15:00")
    return schedule


class BusinessHours(BaseModel):
    """Weekly schedule. A weekday without an entry is after-hours all day."""
    enabled: bool = True
    schedule: dict[str, DaySchedule] = Field(default_factory=_default_schedule)
    timezone: str = "Europe/Sofia"

    @field_validator("schedule", mode="after")
    @classmethod
    def validate_weekdays(cls, v: dict[str, DaySchedule]) -> dict[str, DaySchedule]:
        """מפתחות = שמות ימים באנגלית, אותיות קטנות בלבד"""
        unknown = sorted(set(v) - set(WEEKDAYS))
        if unknown:
            raise ValueError(f"unknown weekday keys: {', '.join(unknown)}; expected one of {', '.join(WEEKDAYS)}")
        return v

    @field_validator("timezone", mode="after")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"timezone='{v}' is not a known IANA timezone") from e
        return v


class AppState(BaseModel):
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    mode: AppMode = AppMode.NORMAL


class CallEvent(BaseModel):
    """A missed call as reported by the call-event source"""
    id: str
    phone_number: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    contact: Optional[Contact] = None
    # תמליל תא קולי / הודעה נלווית - לזיהוי מילות חירום
    message_text: Optional[str] = None

    @field_validator("occurred_at", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """naive timestamps from the call source are UTC"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ResponseContext(BaseModel):
    contact: Optional[Contact] = None
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    current_time: datetime
    has_emergency_keywords: bool = False
    app_mode: AppMode = AppMode.NORMAL
