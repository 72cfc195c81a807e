"""
Template Selection Engine - picks the template for a missed call and fills it.

Selection walks a fixed tier order and returns the first active template of
the first tier that applies:

    emergency → vacation → job_site → after_hours → existing_customer
    → new_customer → business_hours

A tier with no active template falls through to the next one. ``None`` means
"do not send". Triggers declared on templates do not take part.
"""
from datetime import datetime, time
from zoneinfo import ZoneInfo

from app.core.validation import ValidationPatterns
from app.domain.models.calls import (
    AppMode,
    BusinessHours,
    ContactCategory,
    ResponseContext,
    WEEKDAYS,
)
from app.domain.models.templates import MessageTemplate, TemplateCategory


def _parse_hhmm(value: str) -> time | None:
    hours, minutes = (int(part) for part in value.split(":"))
    if hours == 24:
        # 24:00 = עד סוף היום
        return None
    return time(hours, minutes)


def local_time(business_hours: BusinessHours, at: datetime) -> datetime:
    """``at`` in the schedule's timezone. Naive datetimes are taken as UTC."""
    tz = ZoneInfo(business_hours.timezone)
    if at.tzinfo is None:
        at = at.replace(tzinfo=ZoneInfo("UTC"))
    return at.astimezone(tz)


def is_within_business_hours(business_hours: BusinessHours, at: datetime) -> bool:
    """
    True when ``at`` falls inside today's working window (start inclusive,
    end exclusive, minute precision).

    A disabled schedule or a weekday without an entry counts as after-hours.
    """
    if not business_hours.enabled:
        return False

    local = local_time(business_hours, at)
    day_schedule = business_hours.schedule.get(WEEKDAYS[local.weekday()])
    if day_schedule is None:
        return False

    start = _parse_hhmm(day_schedule.start)
    end = _parse_hhmm(day_schedule.end)
    now = local.time().replace(second=0, microsecond=0)
    if start is not None and now < start:
        return False
    return end is None or now < end


def _tier_order(context: ResponseContext) -> list[TemplateCategory]:
    tiers: list[TemplateCategory] = []
    if context.has_emergency_keywords:
        tiers.append(TemplateCategory.EMERGENCY)
    if context.app_mode == AppMode.VACATION:
        tiers.append(TemplateCategory.VACATION)
    if context.app_mode == AppMode.JOB_SITE:
        tiers.append(TemplateCategory.JOB_SITE)
    if not is_within_business_hours(context.business_hours, context.current_time):
        tiers.append(TemplateCategory.AFTER_HOURS)
    if context.contact is not None and context.contact.category == ContactCategory.EXISTING_CUSTOMER:
        tiers.append(TemplateCategory.EXISTING_CUSTOMER)
    tiers.append(TemplateCategory.NEW_CUSTOMER)
    tiers.append(TemplateCategory.BUSINESS_HOURS)
    return tiers


def select_template(
    templates: list[MessageTemplate],
    context: ResponseContext,
) -> MessageTemplate | None:
    """Deterministic for identical ``templates`` and ``context``."""
    active = [t for t in templates if t.is_active]
    for category in _tier_order(context):
        for template in active:
            if template.category == category:
                return template
    return None


def replace_variables(template: MessageTemplate, values: dict[str, str]) -> str:
    """
    Fill every ``{key}`` placeholder in the template content.

    Resolution per key: the supplied value, else the declared variable's
    default, else the placeholder is left as-is. Empty strings count as
    missing.
    """
    defaults = {v.key: v.default_value for v in template.variables}

    def _resolve(match) -> str:
        key = match.group(1)
        return values.get(key) or defaults.get(key) or match.group(0)

    return ValidationPatterns.TEMPLATE_PLACEHOLDER.sub(_resolve, template.content)
