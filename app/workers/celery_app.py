"""
Celery Application Configuration

The worker owns the delivery queue, so it runs as a single process:

    celery -A app.workers.celery_app worker --pool=solo
    celery -A app.workers.celery_app beat
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from app.core.config import settings
from app.core.logging import setup_logging


@celery_setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """JSON logs in the worker too; Celery skips its own logging setup when this is connected"""
    setup_logging(
        settings.LOG_LEVEL,
        json_format=not settings.DEBUG,
        app_name=f"{settings.APP_NAME}-worker",
    )


celery_app = Celery(
    "servicetext_responder",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.BUSINESS_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # tick של התור - batch + retry scan
    "process-message-queue": {
        "task": "app.workers.tasks.process_message_queue",
        "schedule": settings.QUEUE_PROCESS_INTERVAL_SECONDS,
        # tick שלא התחיל עד ה-tick הבא נזרק ולא ממתין בתור
        "options": {"expires": settings.QUEUE_PROCESS_INTERVAL_SECONDS},
    },
    # ניקוי completed/failed ישנים ורשומות KV שפג תוקפן
    "cleanup-message-queue": {
        "task": "app.workers.tasks.cleanup_message_queue",
        "schedule": settings.QUEUE_CLEANUP_INTERVAL_SECONDS,
    },
}
