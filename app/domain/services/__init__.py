"""
Domain Services
"""
from app.domain.services.app_state_service import AppStateService
from app.domain.services.business_rules import BusinessRuleEvaluator, EmergencyDetector
from app.domain.services.delivery_queue import DeliveryQueueManager, calculate_retry_delay
from app.domain.services.response_engine import ResponseEngine
from app.domain.services.template_service import TemplateService

__all__ = [
    "AppStateService",
    "BusinessRuleEvaluator",
    "DeliveryQueueManager",
    "EmergencyDetector",
    "ResponseEngine",
    "TemplateService",
    "calculate_retry_delay",
]
