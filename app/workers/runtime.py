"""
Worker runtime - the single owner of the delivery queue.

התור נבנה פעם אחת לתהליך ה-worker (singleton עם נעילה) ונטען מה-snapshot
בפעם הראשונה ש-task נוגע בו. כל ה-tasks שמשנים את התור רצים כאן.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass

from app.core.logging import get_logger
from app.db.database import create_tables, get_task_session
from app.db.kv_store import RedisKeyValueStore, SqlKeyValueStore
from app.domain.services.alert_service import publish_permanent_failure
from app.domain.services.app_state_service import AppStateService
from app.domain.services.business_rules import BusinessRuleEvaluator, EmergencyDetector
from app.domain.services.delivery_queue import DeliveryQueueManager
from app.domain.services.platforms import get_platform_adapters
from app.domain.services.response_engine import ResponseEngine
from app.domain.services.template_service import TemplateService

logger = get_logger(__name__)


@dataclass
class WorkerRuntime:
    durable_store: SqlKeyValueStore
    queue: DeliveryQueueManager
    templates: TemplateService
    engine: ResponseEngine
    ready: bool = False

    async def ensure_ready(self) -> None:
        """Tables, default templates and the queue snapshot - once per process"""
        if self.ready:
            return
        async with get_task_session() as session:
            await create_tables(session)
        await self.templates.initialize()
        await self.queue.ensure_loaded()
        self.ready = True
        logger.info(
            "Worker runtime ready",
            extra_data=self.queue.get_queue_stats().model_dump(),
        )


_runtime: WorkerRuntime | None = None
_lock = threading.Lock()


def build_runtime() -> WorkerRuntime:
    durable_store = SqlKeyValueStore()
    volatile_store = RedisKeyValueStore()
    adapters = get_platform_adapters(durable_store)

    queue = DeliveryQueueManager(
        adapters,
        durable_store,
        on_permanent_failure=publish_permanent_failure,
    )
    templates = TemplateService(durable_store)
    engine = ResponseEngine(
        template_service=templates,
        app_state_service=AppStateService(durable_store),
        rule_evaluator=BusinessRuleEvaluator(volatile_store),
        emergency_detector=EmergencyDetector(volatile_store),
        queue=queue,
        adapters=adapters,
    )
    return WorkerRuntime(
        durable_store=durable_store,
        queue=queue,
        templates=templates,
        engine=engine,
    )


def get_runtime() -> WorkerRuntime:
    global _runtime
    if _runtime is None:
        with _lock:
            if _runtime is None:
                _runtime = build_runtime()
    return _runtime


def reset_runtime() -> None:
    """איפוס - לשימוש בבדיקות בלבד."""
    global _runtime
    with _lock:
        _runtime = None
