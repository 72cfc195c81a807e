"""
Template Store - persisted message templates with Bulgarian defaults.

כל התבניות נשמרות כ-JSON אחד תחת מפתח יחיד ב-KeyValueStore.
בהפעלה ראשונה (אין תבניות) נוצר סט ברירת המחדל.
"""
import json
import secrets
import time
from datetime import datetime, timezone

from pydantic import TypeAdapter

from app.core.exceptions import NotFoundException, ErrorCode, TemplateValidationError
from app.core.logging import get_logger
from app.core.validation import extract_placeholders
from app.db.kv_store import KeyValueStore
from app.domain.models.templates import (
    MessageTemplate,
    TemplateCategory,
    TemplateTrigger,
    TemplateValidationResult,
    TemplateVariable,
    TriggerCondition,
)

logger = get_logger(__name__)

TEMPLATES_KEY = "templates:all"

_templates_adapter = TypeAdapter(list[MessageTemplate])


def _var(key: str, name: str, required: bool = True, default: str | None = None) -> TemplateVariable:
    return TemplateVariable(key=key, name=name, required=required, default_value=default)


def default_templates() -> list[MessageTemplate]:
    """Стандартни шаблони - one per category"""
    return [
        MessageTemplate(
            id="business_hours_missed",
            name="Пропуснато обаждане - работно време",
            category=TemplateCategory.BUSINESS_HOURS,
            content=(
                "Здравейте! В момента не мога да отговоря на телефона. "
                "Ще се свържа с Вас възможно най-скоро. За спешни случаи: {emergencyPhone}"
            ),
            variables=[_var("emergencyPhone", "Спешен телефон")],
            triggers=[TemplateTrigger(condition=TriggerCondition.BUSINESS_HOURS, value=True)],
        ),
        MessageTemplate(
            id="after_hours_missed",
            name="Пропуснато обаждане - извън работно време",
            category=TemplateCategory.AFTER_HOURS,
            content=(
                "Здравейте! Обаждате се извън работното ми време ({workHours}). "
                "Ще се свържа с Вас утре. За спешни случаи: {emergencyPhone}"
            ),
            variables=[_var("workHours", "Работни часове"), _var("emergencyPhone", "Спешен телефон")],
            triggers=[TemplateTrigger(condition=TriggerCondition.BUSINESS_HOURS, value=False)],
        ),
        MessageTemplate(
            id="emergency_response",
            name="Спешен отговор",
            category=TemplateCategory.EMERGENCY,
            content=(
                "🚨 СПЕШНО: Получих Вашето обаждане за спешен случай. "
                "Свързвам се с Вас в рамките на 15 минути! "
                "Ако не мога да се свържа, обърнете се към: {backupContact}"
            ),
            variables=[_var("backupContact", "Резервен контакт")],
            triggers=[TemplateTrigger(condition=TriggerCondition.EMERGENCY_KEYWORDS, value=True)],
        ),
        MessageTemplate(
            id="new_customer",
            name="Нов клиент",
            category=TemplateCategory.NEW_CUSTOMER,
            content=(
                "Здравейте! Благодаря за обаждането. Аз съм {technicianName}, "
                "{profession} с {experience} години опит. Ще се свържа с Вас в рамките на "
                "{responseTime} за да обсъдим Вашия проблем."
            ),
            variables=[
                _var("technicianName", "Име на майстора"),
                _var("profession", "Професия"),
                _var("experience", "Опит"),
                _var("responseTime", "Време за отговор"),
            ],
            triggers=[TemplateTrigger(condition=TriggerCondition.CONTACT_CATEGORY, value="new_prospect")],
        ),
        MessageTemplate(
            id="existing_customer",
            name="Съществуващ клиент",
            category=TemplateCategory.EXISTING_CUSTOMER,
            content=(
                "Здравейте, {customerName}! Получих Вашето обаждане. "
                "Ще се свържа с Вас скоро за да обсъдим проблема. "
                "Последният път работихме заедно по {lastService}."
            ),
            variables=[
                _var("customerName", "Име на клиента"),
                _var("lastService", "Последна услуга", required=False, default="вашия проект"),
            ],
            triggers=[TemplateTrigger(condition=TriggerCondition.CONTACT_CATEGORY, value="existing_customer")],
        ),
        MessageTemplate(
            id="job_site_mode",
            name="На работа",
            category=TemplateCategory.JOB_SITE,
            content=(
                "В момента съм на работно място и не мога да отговоря. "
                "Ще завърша към {finishTime} и ще се свържа с Вас. За спешни случаи: {emergencyPhone}"
            ),
            variables=[_var("finishTime", "Време на завършване"), _var("emergencyPhone", "Спешен телефон")],
        ),
        MessageTemplate(
            id="vacation_mode",
            name="В отпуска",
            category=TemplateCategory.VACATION,
            content=(
                "В момента съм в отпуска до {returnDate}. За спешни случаи се обърнете към "
                "{alternativeContact} - {alternativePhone}. Ще се свържа с Вас след завръщането си."
            ),
            variables=[
                _var("returnDate", "Дата на завръщане"),
                _var("alternativeContact", "Алтернативен контакт"),
                _var("alternativePhone", "Алтернативен телефон"),
            ],
        ),
        MessageTemplate(
            id="follow_up",
            name="Проследяване",
            category=TemplateCategory.FOLLOW_UP,
            content=(
                "Здравейте! Как върви работата, която направих при Вас на {serviceDate}? "
                "Ако има някакви проблеми или въпроси, моля свържете се с мен. "
                "Вашето мнение е важно за мен!"
            ),
            variables=[_var("serviceDate", "Дата на услугата")],
        ),
    ]


def validate_template(template: MessageTemplate) -> TemplateValidationResult:
    """Name and content are required; every placeholder must be a declared variable."""
    errors: list[str] = []

    if not template.name or not template.name.strip():
        errors.append("Template name is required")
    if not template.content or not template.content.strip():
        errors.append("Template content is required")

    declared = {v.key for v in template.variables}
    undefined = [key for key in extract_placeholders(template.content) if key not in declared]
    if undefined:
        errors.append(f"Undefined variables in content: {', '.join(dict.fromkeys(undefined))}")

    return TemplateValidationResult(is_valid=not errors, errors=errors)


def generate_template_id() -> str:
    return f"template_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class TemplateService:
    """Read/write access to templates. The selection pipeline only reads."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def initialize(self) -> list[MessageTemplate]:
        """Load templates; seed the defaults when nothing was ever stored"""
        templates = await self._load()
        if templates is None:
            templates = default_templates()
            await self._save(templates)
            logger.info(
                "Default templates created",
                extra_data={"count": len(templates)}
            )
        return templates

    async def _load(self) -> list[MessageTemplate] | None:
        raw = await self._store.get(TEMPLATES_KEY)
        if raw is None:
            return None
        return _templates_adapter.validate_json(raw)

    async def _save(self, templates: list[MessageTemplate]) -> None:
        await self._store.set(
            TEMPLATES_KEY,
            json.dumps(_templates_adapter.dump_python(templates, mode="json"), ensure_ascii=False),
        )

    async def _all(self) -> list[MessageTemplate]:
        # נקרא מחדש בכל פעם - ה-API וה-worker כותבים וקוראים מאותו store
        return await self.initialize()

    async def get_templates(self) -> list[MessageTemplate]:
        """Active templates only, in stored order"""
        return [t for t in await self._all() if t.is_active]

    async def get_template_by_id(self, template_id: str) -> MessageTemplate:
        for template in await self.get_templates():
            if template.id == template_id:
                return template
        raise NotFoundException("Template", template_id, ErrorCode.TEMPLATE_NOT_FOUND)

    async def get_templates_by_category(self, category: TemplateCategory) -> list[MessageTemplate]:
        return [t for t in await self.get_templates() if t.category == category]

    async def save_template(self, template: MessageTemplate) -> MessageTemplate:
        """Create or update by id. Invalid templates are rejected."""
        result = validate_template(template)
        if not result.is_valid:
            raise TemplateValidationError(template.id, result.errors)

        templates = await self._all()
        now = datetime.now(timezone.utc)
        for index, existing in enumerate(templates):
            if existing.id == template.id:
                saved = template.model_copy(update={"created_at": existing.created_at, "updated_at": now})
                templates[index] = saved
                break
        else:
            saved = template.model_copy(update={"created_at": now, "updated_at": now})
            templates.append(saved)

        await self._save(templates)
        logger.info("Template saved", extra_data={"template_id": saved.id, "category": saved.category.value})
        return saved

    async def delete_template(self, template_id: str) -> bool:
        templates = await self._all()
        remaining = [t for t in templates if t.id != template_id]
        if len(remaining) == len(templates):
            return False
        await self._save(remaining)
        logger.info("Template deleted", extra_data={"template_id": template_id})
        return True

    async def duplicate_template(self, template_id: str, new_name: str) -> MessageTemplate:
        original = await self.get_template_by_id(template_id)
        duplicate = original.model_copy(update={"id": generate_template_id(), "name": new_name})
        return await self.save_template(duplicate)
