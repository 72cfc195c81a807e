"""
Call event intake - the HTTP face of the call-event source.

The request is validated and handed to the worker; the response never waits
for template selection or delivery.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field, field_validator

from app.core.logging import get_correlation_id, get_logger
from app.core.validation import PhoneNumberValidator, TextSanitizer
from app.domain.models.calls import Contact
from app.domain.models.messaging import generate_message_id
from app.workers.tasks import handle_call_event

logger = get_logger(__name__)

router = APIRouter()


class CallEventCreate(BaseModel):
    id: str = Field(default_factory=lambda: generate_message_id("call"))
    phone_number: str
    occurred_at: Optional[datetime] = None
    contact: Optional[Contact] = None
    message_text: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not PhoneNumberValidator.validate(v):
            raise ValueError("Invalid phone number format")
        return PhoneNumberValidator.normalize(v)

    @field_validator("message_text")
    @classmethod
    def sanitize_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return TextSanitizer.sanitize(v, max_length=2000)


class CallEventAccepted(BaseModel):
    call_id: str
    task_id: str
    status: str = "accepted"


@router.post(
    "",
    response_model=CallEventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a missed call",
)
async def create_call_event(event: CallEventCreate) -> CallEventAccepted:
    payload = event.model_dump(mode="json", exclude_none=True)
    result = handle_call_event.delay(payload, correlation_id=get_correlation_id())

    logger.info(
        "Call event accepted",
        extra_data={
            "call_id": event.id,
            "phone": PhoneNumberValidator.mask(event.phone_number),
            "task_id": result.id,
        },
    )
    return CallEventAccepted(call_id=event.id, task_id=result.id)
