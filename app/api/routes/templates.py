"""
Template and app-state management.

Templates are read-only to the delivery pipeline; this router is the only writer.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.api.dependencies.stores import get_app_state_service, get_template_service
from app.core.logging import get_logger
from app.domain.models.calls import AppMode, AppState, BusinessHours
from app.domain.models.templates import MessageTemplate, TemplateCategory
from app.domain.services.app_state_service import AppStateService
from app.domain.services.template_service import TemplateService, generate_template_id

logger = get_logger(__name__)

router = APIRouter()


class DuplicateTemplateRequest(BaseModel):
    name: str


class AppModeUpdate(BaseModel):
    mode: AppMode


@router.get("/templates", response_model=list[MessageTemplate])
async def list_templates(
    category: Optional[TemplateCategory] = None,
    service: TemplateService = Depends(get_template_service),
) -> list[MessageTemplate]:
    if category is not None:
        return await service.get_templates_by_category(category)
    return await service.get_templates()


@router.get("/templates/{template_id}", response_model=MessageTemplate)
async def get_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service),
) -> MessageTemplate:
    return await service.get_template_by_id(template_id)


@router.post("/templates", response_model=MessageTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: MessageTemplate,
    service: TemplateService = Depends(get_template_service),
) -> MessageTemplate:
    if not template.id:
        template = template.model_copy(update={"id": generate_template_id()})
    return await service.save_template(template)


@router.put("/templates/{template_id}", response_model=MessageTemplate)
async def update_template(
    template_id: str,
    template: MessageTemplate,
    service: TemplateService = Depends(get_template_service),
) -> MessageTemplate:
    return await service.save_template(template.model_copy(update={"id": template_id}))


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service),
) -> None:
    if not await service.delete_template(template_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")


@router.post(
    "/templates/{template_id}/duplicate",
    response_model=MessageTemplate,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_template(
    template_id: str,
    body: DuplicateTemplateRequest,
    service: TemplateService = Depends(get_template_service),
) -> MessageTemplate:
    return await service.duplicate_template(template_id, body.name)


@router.get("/app-state", response_model=AppState)
async def get_app_state(service: AppStateService = Depends(get_app_state_service)) -> AppState:
    return await service.get_app_state()


@router.put("/app-state/mode", response_model=AppState)
async def set_app_mode(
    body: AppModeUpdate,
    service: AppStateService = Depends(get_app_state_service),
) -> AppState:
    return await service.set_mode(body.mode)


@router.put("/app-state/business-hours", response_model=AppState)
async def set_business_hours(
    body: BusinessHours,
    service: AppStateService = Depends(get_app_state_service),
) -> AppState:
    return await service.set_business_hours(body)
