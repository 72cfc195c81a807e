"""
Celery Tasks - the periodic queue ticks and every operation that mutates the queue.

All of them run inside the single worker process that owns the
DeliveryQueueManager (see app.workers.runtime). The API only dispatches.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager

from app.workers.celery_app import celery_app
from app.workers.runtime import get_runtime
from app.core.logging import get_logger, set_correlation_id
from app.domain.models.calls import CallEvent

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # סגירת Redis singleton לפני סגירת ה-loop - מונע שימוש חוזר
            # ב-client שמחובר ל-event loop סגור בהרצה הבאה
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro, correlation_id: str | None = None):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id(correlation_id)

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="app.workers.tasks.handle_call_event")
def handle_call_event(event: dict, correlation_id: str | None = None) -> dict:
    """Missed call → (maybe) one queued auto-response"""

    async def _handle():
        runtime = get_runtime()
        await runtime.ensure_ready()
        call_event = CallEvent.model_validate(event)
        request = await runtime.engine.handle_call_event(call_event)
        if request is None:
            return {"queued": False, "call_id": call_event.id}
        return {
            "queued": True,
            "call_id": call_event.id,
            "message_id": request.id,
            "platform": request.platform.value,
            "priority": request.priority.value,
        }

    return run_async(_handle(), correlation_id)


@celery_app.task(name="app.workers.tasks.process_message_queue")
def process_message_queue() -> dict:
    """Periodic tick: one batch plus the retry scan"""

    async def _process():
        runtime = get_runtime()
        await runtime.ensure_ready()
        result = await runtime.queue.process_batch()
        return {**result, **runtime.queue.get_queue_stats().model_dump()}

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.cleanup_message_queue")
def cleanup_message_queue() -> dict:
    """Hourly: drop old completed/failed messages and expired KV rows"""

    async def _cleanup():
        runtime = get_runtime()
        await runtime.ensure_ready()
        removed = await runtime.queue.cleanup()
        expired = await runtime.durable_store.purge_expired()
        logger.info(
            "Queue cleanup finished",
            extra_data={"removed_messages": removed, "expired_entries": expired},
        )
        return {"removed_messages": removed, "expired_entries": expired}

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.cancel_message")
def cancel_message(message_id: str, correlation_id: str | None = None) -> dict:
    async def _cancel():
        runtime = get_runtime()
        await runtime.ensure_ready()
        return {"message_id": message_id, "cancelled": await runtime.queue.cancel_message(message_id)}

    return run_async(_cancel(), correlation_id)


@celery_app.task(name="app.workers.tasks.retry_message")
def retry_message(message_id: str, correlation_id: str | None = None) -> dict:
    async def _retry():
        runtime = get_runtime()
        await runtime.ensure_ready()
        return {"message_id": message_id, "requeued": await runtime.queue.retry_message(message_id)}

    return run_async(_retry(), correlation_id)


@celery_app.task(name="app.workers.tasks.clear_all_queues")
def clear_all_queues(correlation_id: str | None = None) -> dict:
    async def _clear():
        runtime = get_runtime()
        await runtime.ensure_ready()
        await runtime.queue.clear_all_queues()
        return {"cleared": True}

    return run_async(_clear(), correlation_id)
