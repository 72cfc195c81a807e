"""
Response Engine - the single entry point from the call-event source.

    call event → emergency detection → business rules → template selection
    → variable substitution → DeliveryQueueManager.enqueue → record_response

handle_call_event() never raises: every failure is logged and the call is
answered with ``None`` (nothing queued). Delivery happens later, on the
queue's own tick.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Mapping

from app.core.config import settings
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, TextSanitizer
from app.domain.models.calls import (
    AppState,
    CallEvent,
    Contact,
    ContactPriority,
    ResponseContext,
    WEEKDAYS,
)
from app.domain.models.messaging import (
    PLATFORM_FALLBACK_ORDER,
    MessagePlatform,
    MessagePriority,
    MessageRequest,
    generate_message_id,
)
from app.domain.services.app_state_service import AppStateService
from app.domain.services.business_rules import BusinessRuleEvaluator, EmergencyDetector
from app.domain.services.delivery_queue import DeliveryQueueManager
from app.domain.services.platforms.base_adapter import BasePlatformAdapter
from app.domain.services.template_selection import (
    local_time,
    replace_variables,
    select_template,
)
from app.domain.services.template_service import TemplateService

logger = get_logger(__name__)

DEFAULT_WORK_HOURS = "08:00 - 18:00"

_RESPONSE_TIMES = {
    ContactPriority.VIP: "15 минути",
    ContactPriority.HIGH: "30 минути",
}
_DEFAULT_RESPONSE_TIME = "1 час"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bg_date(value: date) -> str:
    return value.strftime("%d.%m.%Y")


def determine_priority(contact: Contact | None, is_emergency: bool) -> MessagePriority:
    if is_emergency:
        return MessagePriority.URGENT
    if contact is not None and contact.priority in (ContactPriority.VIP, ContactPriority.HIGH):
        return MessagePriority.HIGH
    return MessagePriority.NORMAL


def choose_platform(
    contact: Contact | None,
    adapters: Mapping[MessagePlatform, BasePlatformAdapter],
) -> MessagePlatform:
    """Preferred platform, else the first enabled one, else WhatsApp"""
    if contact is not None and contact.preferred_platform is not None:
        return contact.preferred_platform
    for platform in PLATFORM_FALLBACK_ORDER:
        adapter = adapters.get(platform)
        if adapter is not None and adapter.is_enabled():
            return platform
    return MessagePlatform.WHATSAPP


def prepare_variables(context: ResponseContext, now: datetime) -> dict[str, str]:
    """Values for every placeholder the default templates use"""
    contact = context.contact
    local_now = local_time(context.business_hours, now)

    schedule = context.business_hours.schedule
    today = schedule.get(WEEKDAYS[local_now.weekday()]) or schedule.get("monday")
    work_hours = f"{today.start} - {today.end}" if today else DEFAULT_WORK_HOURS

    if settings.VACATION_RETURN_DATE:
        return_date = _bg_date(date.fromisoformat(settings.VACATION_RETURN_DATE))
    else:
        return_date = _bg_date((local_now + timedelta(days=7)).date())

    variables = {
        "technicianName": settings.TECHNICIAN_NAME,
        "profession": settings.PROFESSION,
        "experience": settings.EXPERIENCE_YEARS,
        "emergencyPhone": settings.EMERGENCY_PHONE,
        "backupContact": settings.BACKUP_CONTACT,
        "alternativeContact": settings.ALTERNATIVE_CONTACT,
        "alternativePhone": settings.ALTERNATIVE_PHONE,
        "workHours": work_hours,
        "finishTime": (local_now + timedelta(hours=2)).strftime("%H:%M"),
        "returnDate": return_date,
        "responseTime": _RESPONSE_TIMES.get(
            contact.priority if contact else None, _DEFAULT_RESPONSE_TIME
        ),
    }

    if contact is not None:
        if contact.name:
            variables["customerName"] = contact.name
        if contact.service_history:
            last_service = contact.service_history[-1]
            variables["lastService"] = last_service.description
            variables["serviceDate"] = _bg_date(last_service.performed_on)

    return variables


class ResponseEngine:
    def __init__(
        self,
        *,
        template_service: TemplateService,
        app_state_service: AppStateService,
        rule_evaluator: BusinessRuleEvaluator,
        emergency_detector: EmergencyDetector,
        queue: DeliveryQueueManager,
        adapters: Mapping[MessagePlatform, BasePlatformAdapter],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._templates = template_service
        self._app_state = app_state_service
        self._rules = rule_evaluator
        self._emergency = emergency_detector
        self._queue = queue
        self._adapters = adapters
        self._clock = clock

    def build_context(self, event: CallEvent, state: AppState, is_emergency: bool) -> ResponseContext:
        return ResponseContext(
            contact=event.contact,
            business_hours=state.business_hours,
            current_time=self._clock(),
            has_emergency_keywords=is_emergency,
            app_mode=state.mode,
        )

    async def handle_call_event(self, event: CallEvent) -> MessageRequest | None:
        """Queued request, or None when suppressed, when no template fits, or on error"""
        try:
            return await self._handle(event)
        except Exception as e:
            logger.error(
                "Failed to handle call event",
                extra_data={
                    "call_id": event.id,
                    "phone": PhoneNumberValidator.mask(event.phone_number),
                    "error": str(e),
                },
                exc_info=True,
            )
            return None

    async def _handle(self, event: CallEvent) -> MessageRequest | None:
        masked = PhoneNumberValidator.mask(event.phone_number)
        state = await self._app_state.get_app_state()
        is_emergency = await self._emergency.is_emergency(event)
        context = self.build_context(event, state, is_emergency)

        if not await self._rules.should_respond(event, context):
            return None

        template = select_template(await self._templates.get_templates(), context)
        if template is None:
            logger.warning(
                "No active template for call, nothing sent",
                extra_data={"call_id": event.id, "phone": masked},
            )
            return None

        variables = prepare_variables(context, context.current_time)
        content = TextSanitizer.sanitize(replace_variables(template, variables))
        recipient = PhoneNumberValidator.normalize(event.phone_number)

        request = MessageRequest(
            id=generate_message_id(),
            platform=choose_platform(event.contact, self._adapters),
            recipient=recipient,
            content=content,
            template_id=template.id,
            variables=variables,
            priority=determine_priority(event.contact, is_emergency),
            max_retries=settings.MESSAGE_MAX_RETRIES,
            created_at=context.current_time,
        )

        await self._queue.enqueue(request)
        await self._rules.record_response(recipient, at=context.current_time)

        logger.info(
            "Auto-response queued for missed call",
            extra_data={
                "call_id": event.id,
                "message_id": request.id,
                "template_id": template.id,
                "platform": request.platform.value,
                "priority": request.priority.value,
                "phone": masked,
            },
        )
        return request
