"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.call_events import router as call_events_router
from app.api.routes.queue import router as queue_router
from app.api.routes.templates import router as templates_router

router = APIRouter()

router.include_router(call_events_router, prefix="/call-events", tags=["Call Events"])
router.include_router(queue_router, prefix="/queue", tags=["Queue"])
router.include_router(templates_router, tags=["Templates"])
