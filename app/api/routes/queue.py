"""
Delivery queue - read views from the persisted snapshot, admin actions via the worker.

הקריאה היא מה-snapshot האחרון שנשמר (ייתכן פיגור של tick אחד).
פעולות שמשנות את התור נשלחות ל-worker שמחזיק אותו.
"""
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from app.core.exceptions import ErrorCode, NotFoundException
from app.core.logging import get_correlation_id, get_logger
from app.db.kv_store import KeyValueStore
from app.api.dependencies.stores import get_kv_store
from app.domain.models.messaging import (
    MessagePlatform,
    MessageRequest,
    PlatformCounters,
    QueueName,
    QueueStats,
)
from app.domain.services.alert_service import get_alert_history
from app.domain.services.delivery_queue import load_queue_snapshot
from app.workers.tasks import cancel_message, clear_all_queues, retry_message

logger = get_logger(__name__)

router = APIRouter()


class QueueStatsResponse(BaseModel):
    queue: QueueStats
    platforms: dict[MessagePlatform, PlatformCounters]


class QueueMessagesResponse(BaseModel):
    state: QueueName
    messages: list[MessageRequest]
    count: int


class QueuedMessageResponse(BaseModel):
    state: QueueName
    message: MessageRequest


class TaskAccepted(BaseModel):
    task_id: str
    status: str = "accepted"


class AlertHistoryResponse(BaseModel):
    alerts: list[dict]
    count: int


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(store: KeyValueStore = Depends(get_kv_store)) -> QueueStatsResponse:
    snapshot = await load_queue_snapshot(store)
    return QueueStatsResponse(queue=snapshot.stats(), platforms=snapshot.counters)


@router.get("/messages", response_model=QueueMessagesResponse)
async def get_messages(
    state: QueueName = Query(QueueName.PENDING),
    limit: int = Query(100, ge=1, le=500),
    store: KeyValueStore = Depends(get_kv_store),
) -> QueueMessagesResponse:
    snapshot = await load_queue_snapshot(store)
    messages = snapshot.container(state)
    return QueueMessagesResponse(state=state, messages=messages[:limit], count=len(messages))


@router.get("/messages/{message_id}", response_model=QueuedMessageResponse)
async def get_message(
    message_id: str,
    store: KeyValueStore = Depends(get_kv_store),
) -> QueuedMessageResponse:
    snapshot = await load_queue_snapshot(store)
    for state in QueueName:
        for message in snapshot.container(state):
            if message.id == message_id:
                return QueuedMessageResponse(state=state, message=message)
    raise NotFoundException("Message", message_id, ErrorCode.MESSAGE_NOT_FOUND)


@router.post(
    "/messages/{message_id}/cancel",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_queued_message(message_id: str) -> TaskAccepted:
    """Pending messages only; the worker reports whether anything was removed"""
    result = cancel_message.delay(message_id, correlation_id=get_correlation_id())
    logger.info("Cancel requested", extra_data={"message_id": message_id, "task_id": result.id})
    return TaskAccepted(task_id=result.id)


@router.post(
    "/messages/{message_id}/retry",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_failed_message(message_id: str) -> TaskAccepted:
    """Failed messages only; retry budget starts over"""
    result = retry_message.delay(message_id, correlation_id=get_correlation_id())
    logger.info("Manual retry requested", extra_data={"message_id": message_id, "task_id": result.id})
    return TaskAccepted(task_id=result.id)


@router.post("/clear", response_model=TaskAccepted, status_code=status.HTTP_202_ACCEPTED)
async def clear_queues() -> TaskAccepted:
    result = clear_all_queues.delay(correlation_id=get_correlation_id())
    logger.warning("Queue clear requested", extra_data={"task_id": result.id})
    return TaskAccepted(task_id=result.id)


@router.get("/alerts", response_model=AlertHistoryResponse)
async def get_alerts(limit: int = Query(50, ge=1, le=100)) -> AlertHistoryResponse:
    alerts = await get_alert_history(limit)
    return AlertHistoryResponse(alerts=alerts, count=len(alerts))
