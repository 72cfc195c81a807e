"""
Delivery Queue Manager - priority retry queue in front of the platform adapters.

Every message is in exactly one of four containers:

- ``pending``     ordered by priority rank (urgent → low), stable within a rank
- ``processing``  the messages of the batch currently being sent
- ``completed``   the last N successful sends (oldest evicted)
- ``failed``      retries exhausted; purged after the retention period

A periodic tick calls ``process_batch()``: up to ``batch_size`` due messages
move from ``pending`` to ``processing`` and are sent one after another with a
short pause between sends. A non-success outcome (or an exception) bumps
``retry_count`` and re-queues the message with exponential backoff, or moves
it to ``failed`` once ``max_retries`` is reached. After the batch a retry scan
sends any further retries whose time has come.

The manager owns its containers and counters; the rest of the system reads
them through the query methods or through the persisted snapshot.
"""
import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Mapping

from app.core.config import settings
from app.core.exceptions import (
    AdapterUnavailableError,
    DeliveryFailureError,
    ErrorCode,
    NotFoundException,
    PermanentFailureError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.validation import PhoneNumberValidator
from app.db.kv_store import KeyValueStore
from app.domain.models.messaging import (
    MessagePlatform,
    MessageRequest,
    MessageResponse,
    PlatformCounters,
    QueueName,
    QueueSnapshot,
    QueueStats,
)
from app.domain.services.platforms.base_adapter import BasePlatformAdapter

logger = get_logger(__name__)

QUEUE_STATE_KEY = "message_queue:state"

PermanentFailureHook = Callable[[MessageRequest, PermanentFailureError], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_retry_delay(
    retry_count: int,
    *,
    base_seconds: float = 60,
    max_backoff_seconds: float = 900,
    jitter_ratio: float = 0.3,
    rng: random.Random | None = None,
) -> float:
    """
    Backoff in seconds before attempt number ``retry_count + 1``.

        delay = min(base_seconds * 2 ** (retry_count - 1), max_backoff_seconds)
        delay += uniform(0, jitter_ratio * delay)

    The jittered value is capped at ``max_backoff_seconds`` as well, so the
    result always lies in ``[delay, delay * (1 + jitter_ratio)]`` and never
    exceeds the cap. Large retry counts do not compute huge powers.
    """
    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0.0

    exponent = max(retry_count - 1, 0)

    if base_seconds >= max_backoff_seconds:
        delay = float(max_backoff_seconds)
    else:
        # 2**exponent >= ceil(max/base) ⇒ the cap applies; checked via bit_length
        required_multiplier = int(-(-max_backoff_seconds // base_seconds))
        threshold = (required_multiplier - 1).bit_length()
        if exponent >= threshold:
            delay = float(max_backoff_seconds)
        else:
            delay = min(float(base_seconds * (2 ** exponent)), float(max_backoff_seconds))

    jitter = (rng or random).uniform(0, jitter_ratio * delay) if jitter_ratio > 0 else 0.0
    return min(delay + jitter, float(max_backoff_seconds))


class DeliveryQueueManager:
    """Owned, injectable queue. Tests drive time through ``clock`` and ``sleep``."""

    def __init__(
        self,
        adapters: Mapping[MessagePlatform, BasePlatformAdapter],
        store: KeyValueStore | None = None,
        *,
        batch_size: int | None = None,
        inter_message_delay: float | None = None,
        completed_retention: int | None = None,
        retention: timedelta | None = None,
        retry_base_seconds: float | None = None,
        max_backoff_seconds: float | None = None,
        jitter_ratio: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        on_permanent_failure: PermanentFailureHook | None = None,
    ) -> None:
        self._adapters = dict(adapters)
        self._store = store
        self._batch_size = batch_size or settings.QUEUE_BATCH_SIZE
        self._inter_message_delay = (
            settings.QUEUE_INTER_MESSAGE_DELAY_SECONDS
            if inter_message_delay is None else inter_message_delay
        )
        self._completed_retention = completed_retention or settings.QUEUE_COMPLETED_RETENTION
        self._retention = retention or timedelta(days=settings.QUEUE_RETENTION_DAYS)
        self._retry_base_seconds = retry_base_seconds or settings.QUEUE_RETRY_BASE_SECONDS
        self._max_backoff_seconds = max_backoff_seconds or settings.QUEUE_MAX_BACKOFF_SECONDS
        self._jitter_ratio = settings.QUEUE_RETRY_JITTER_RATIO if jitter_ratio is None else jitter_ratio
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._on_permanent_failure = on_permanent_failure

        self._pending: list[MessageRequest] = []
        self._processing: list[MessageRequest] = []
        self._completed: list[MessageRequest] = []
        self._failed: list[MessageRequest] = []
        self._counters: dict[MessagePlatform, PlatformCounters] = {
            platform: PlatformCounters() for platform in MessagePlatform
        }

        # ריצה אחת בכל רגע - tick שחופף לריצה פעילה מדולג ולא נכנס לתור
        self._processing_active = False
        self._loaded = False

    # ── persistence ──

    @property
    def is_processing(self) -> bool:
        return self._processing_active

    async def load(self) -> None:
        """Restore the last snapshot. Messages caught mid-send go back to pending."""
        self._loaded = True
        if self._store is None:
            return

        try:
            raw = await self._store.get(QUEUE_STATE_KEY)
        except Exception as e:
            logger.error(
                "Failed to load queue snapshot, starting empty",
                extra_data={"error": str(e)},
                exc_info=True,
            )
            return
        if not raw:
            return

        try:
            snapshot = QueueSnapshot.model_validate_json(raw)
        except ValueError as e:
            logger.error(
                "Queue snapshot is corrupt, starting empty",
                extra_data={"error": str(e)},
            )
            return

        self._pending = []
        for message in snapshot.pending:
            self._insert_pending(message)
        self._completed = list(snapshot.completed)
        self._failed = list(snapshot.failed)
        self._counters.update(snapshot.counters)

        now = self._clock()
        for message in snapshot.processing:
            # ייתכן שנשלחה - חוזרת ל-pending ותישלח שוב
            message.scheduled_at = now if message.retry_count > 0 else None
            self._insert_pending(message)
        self._processing = []

        logger.info(
            "Queue snapshot restored",
            extra_data={
                **self.get_queue_stats().model_dump(),
                "recovered_in_flight": len(snapshot.processing),
            },
        )

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            pending=[m.model_copy() for m in self._pending],
            processing=[m.model_copy() for m in self._processing],
            completed=[m.model_copy() for m in self._completed],
            failed=[m.model_copy() for m in self._failed],
            counters={p: c.model_copy() for p, c in self._counters.items()},
            saved_at=self._clock(),
        )

    async def _save(self) -> None:
        """A failed save is logged; in-memory state stays authoritative"""
        if self._store is None:
            return
        try:
            await self._store.set(QUEUE_STATE_KEY, self.snapshot().model_dump_json())
        except Exception as e:
            logger.error(
                "Failed to persist queue snapshot",
                extra_data={"error": str(e)},
                exc_info=True,
            )

    # ── containers ──

    def _insert_pending(self, message: MessageRequest) -> None:
        """Insert after the last message of equal or higher priority (stable order)"""
        rank = message.priority.rank
        index = len(self._pending)
        for i, queued in enumerate(self._pending):
            if queued.priority.rank > rank:
                index = i
                break
        self._pending.insert(index, message)

    @staticmethod
    def _remove(container: list[MessageRequest], message: MessageRequest) -> None:
        for i, queued in enumerate(container):
            if queued is message:
                del container[i]
                return

    def _all_ids(self) -> set[str]:
        return {
            m.id
            for container in (self._pending, self._processing, self._completed, self._failed)
            for m in container
        }

    # ── enqueue ──

    def _validate(self, request: MessageRequest) -> None:
        if not request.id:
            raise ValidationException("Message id is required", field="id")
        if not request.recipient or not request.recipient.strip():
            raise ValidationException("Recipient is required", field="recipient")
        if not request.content or not request.content.strip():
            raise ValidationException("Message content is required", field="content")
        if request.max_retries < 1:
            raise ValidationException("max_retries must be at least 1", field="max_retries")
        if request.retry_count != 0 or request.scheduled_at is not None:
            raise ValidationException(
                "New messages must start with retry_count=0 and no schedule",
                field="retry_count",
            )
        if request.id in self._all_ids():
            raise ValidationException(f"Message {request.id} is already queued", field="id")

    async def enqueue(self, request: MessageRequest) -> MessageRequest:
        """
        Add a message to ``pending`` in priority order.

        Raises:
            ValidationException: malformed request; never queued or retried
        """
        self._validate(request)
        self._insert_pending(request)
        await self._save()

        logger.info(
            "Message enqueued",
            extra_data={
                "message_id": request.id,
                "platform": request.platform.value,
                "priority": request.priority.value,
                "recipient": PhoneNumberValidator.mask(request.recipient),
                "pending": len(self._pending),
            },
        )
        return request

    # ── dispatch ──

    def _take_due_batch(self, now: datetime) -> list[MessageRequest]:
        """Up to batch_size due messages from the head of pending, moved to processing"""
        batch: list[MessageRequest] = []
        for message in self._pending:
            if len(batch) >= self._batch_size:
                break
            if message.scheduled_at is None or message.scheduled_at <= now:
                batch.append(message)

        for message in batch:
            self._remove(self._pending, message)
            message.scheduled_at = None
            self._processing.append(message)
        return batch

    async def _send(self, message: MessageRequest) -> MessageResponse:
        adapter = self._adapters.get(message.platform)
        if adapter is None or not adapter.is_enabled():
            raise AdapterUnavailableError(message.id, message.platform.value)

        response = await adapter.send(message)
        if not response.is_success:
            raise DeliveryFailureError(message.id, message.platform.value, response.error)
        return response

    async def _dispatch(self, message: MessageRequest) -> bool:
        """Send one message that is already in ``processing``. Always leaves processing."""
        error: Exception | None = None
        try:
            await self._send(message)
        except Exception as e:
            error = e

        self._remove(self._processing, message)
        if error is None:
            self._complete(message)
            return True

        permanent = self._record_failure(message, error)
        if permanent is not None:
            await self._notify_permanent_failure(message, permanent)
        return False

    def _complete(self, message: MessageRequest) -> None:
        message.processed_at = self._clock()
        message.scheduled_at = None
        message.last_error = None
        self._completed.append(message)
        if len(self._completed) > self._completed_retention:
            del self._completed[: len(self._completed) - self._completed_retention]
        self._counters[message.platform].sent += 1

        logger.info(
            "Message delivered",
            extra_data={
                "message_id": message.id,
                "platform": message.platform.value,
                "attempt": message.retry_count + 1,
            },
        )

    def _record_failure(
        self,
        message: MessageRequest,
        error: Exception,
    ) -> PermanentFailureError | None:
        now = self._clock()
        message.retry_count += 1
        message.processed_at = now
        message.last_error = getattr(error, "message", None) or str(error) or type(error).__name__

        if message.retry_count < message.max_retries:
            delay = calculate_retry_delay(
                message.retry_count,
                base_seconds=self._retry_base_seconds,
                max_backoff_seconds=self._max_backoff_seconds,
                jitter_ratio=self._jitter_ratio,
                rng=self._rng,
            )
            message.scheduled_at = now + timedelta(seconds=delay)
            self._insert_pending(message)
            logger.warning(
                "Delivery failed, retry scheduled",
                extra_data={
                    "message_id": message.id,
                    "platform": message.platform.value,
                    "retry_count": message.retry_count,
                    "max_retries": message.max_retries,
                    "retry_in_seconds": round(delay, 1),
                    "error": message.last_error,
                    "error_type": type(error).__name__,
                },
            )
            return None

        message.scheduled_at = None
        self._failed.append(message)
        self._counters[message.platform].failed += 1

        permanent = PermanentFailureError(
            message.id,
            message.platform.value,
            message.retry_count,
            message.last_error,
        )
        logger.error(
            "Message failed permanently",
            extra_data={
                "message_id": message.id,
                "platform": message.platform.value,
                "recipient": PhoneNumberValidator.mask(message.recipient),
                "retry_count": message.retry_count,
                "error": message.last_error,
            },
        )
        return permanent

    async def _notify_permanent_failure(
        self,
        message: MessageRequest,
        error: PermanentFailureError,
    ) -> None:
        if self._on_permanent_failure is None:
            return
        try:
            await self._on_permanent_failure(message, error)
        except Exception as e:
            logger.error(
                "Permanent failure alert hook failed",
                extra_data={"message_id": message.id, "error": str(e)},
                exc_info=True,
            )

    @log_async_operation("process_message_batch")
    async def process_batch(self) -> dict[str, int | bool]:
        """
        One tick of the worker. No-op while another run is active.

        Returns counts for the batch and the retry scan that follows it.
        """
        if self._processing_active:
            logger.info("Queue processing already active, tick skipped")
            return {"skipped": True, "sent": 0, "failed": 0, "retried": 0}

        self._processing_active = True
        try:
            batch = self._take_due_batch(self._clock())
            sent = failed = 0
            for index, message in enumerate(batch):
                if index > 0 and self._inter_message_delay > 0:
                    await self._sleep(self._inter_message_delay)
                if await self._dispatch(message):
                    sent += 1
                else:
                    failed += 1
            await self._save()

            retried = await self._retry_due()
            return {"skipped": False, "sent": sent, "failed": failed, "retried": retried}
        finally:
            self._processing_active = False

    async def _retry_due(self) -> int:
        now = self._clock()
        due = [
            m for m in self._pending
            if m.retry_count > 0 and m.scheduled_at is not None and m.scheduled_at <= now
        ]
        if not due:
            return 0

        logger.info("Messages ready for retry", extra_data={"count": len(due)})
        for message in due:
            self._remove(self._pending, message)
            message.scheduled_at = None
            self._processing.append(message)
            await self._dispatch(message)

        await self._save()
        return len(due)

    async def retry_scan(self) -> int:
        """Send every pending retry whose ``scheduled_at`` has passed"""
        if self._processing_active:
            return 0
        self._processing_active = True
        try:
            return await self._retry_due()
        finally:
            self._processing_active = False

    # ── maintenance & admin ──

    async def cleanup(self) -> int:
        """Drop completed/failed messages older than the retention period"""
        cutoff = self._clock() - self._retention

        def _fresh(message: MessageRequest) -> bool:
            return (message.processed_at or message.created_at) >= cutoff

        before = len(self._completed) + len(self._failed)
        self._completed = [m for m in self._completed if _fresh(m)]
        self._failed = [m for m in self._failed if _fresh(m)]
        removed = before - len(self._completed) - len(self._failed)

        if removed:
            await self._save()
            logger.info("Old messages cleaned up", extra_data={"removed": removed})
        return removed

    async def cancel_message(self, message_id: str) -> bool:
        """Remove a message from pending. In-flight and finished messages cannot be cancelled."""
        for message in self._pending:
            if message.id == message_id:
                self._remove(self._pending, message)
                await self._save()
                logger.info("Message cancelled", extra_data={"message_id": message_id})
                return True
        return False

    async def retry_message(self, message_id: str) -> bool:
        """Move a failed message back to pending with a fresh retry budget"""
        for message in self._failed:
            if message.id == message_id:
                self._remove(self._failed, message)
                message.retry_count = 0
                message.scheduled_at = None
                self._insert_pending(message)
                await self._save()
                logger.info("Failed message re-queued", extra_data={"message_id": message_id})
                return True
        return False

    async def clear_all_queues(self) -> None:
        """Empty all four containers. Platform counters are kept."""
        self._pending = []
        self._processing = []
        self._completed = []
        self._failed = []
        await self._save()
        logger.warning("All delivery queues cleared")

    # ── queries ──

    def get_queue_stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self._pending),
            processing=len(self._processing),
            completed=len(self._completed),
            failed=len(self._failed),
            total_processed=len(self._completed) + len(self._failed),
        )

    def get_message_stats(self) -> dict[MessagePlatform, PlatformCounters]:
        return {platform: counters.model_copy() for platform, counters in self._counters.items()}

    def get_messages_by_status(self, name: QueueName) -> list[MessageRequest]:
        container = {
            QueueName.PENDING: self._pending,
            QueueName.PROCESSING: self._processing,
            QueueName.COMPLETED: self._completed,
            QueueName.FAILED: self._failed,
        }[name]
        return [m.model_copy() for m in container]

    def get_message(self, message_id: str) -> tuple[QueueName, MessageRequest]:
        for name in QueueName:
            for message in self.get_messages_by_status(name):
                if message.id == message_id:
                    return name, message
        raise NotFoundException("Message", message_id, ErrorCode.MESSAGE_NOT_FOUND)

    def verify_invariants(self) -> list[str]:
        """Empty list when the containers are consistent"""
        violations: list[str] = []
        seen: dict[str, str] = {}
        for name in QueueName:
            for message in self.get_messages_by_status(name):
                if message.id in seen:
                    violations.append(f"{message.id} is in both {seen[message.id]} and {name.value}")
                seen[message.id] = name.value
                if message.retry_count < 0:
                    violations.append(f"{message.id} has negative retry_count")
                has_schedule = message.scheduled_at is not None
                expects_schedule = name == QueueName.PENDING and message.retry_count > 0
                if has_schedule != expects_schedule:
                    violations.append(
                        f"{message.id} in {name.value} with retry_count={message.retry_count} "
                        f"has scheduled_at={message.scheduled_at}"
                    )

        ranks = [m.priority.rank for m in self._pending]
        if ranks != sorted(ranks):
            violations.append("pending is not ordered by priority")
        if len(self._completed) > self._completed_retention:
            violations.append("completed exceeds its retention bound")
        return violations


async def load_queue_snapshot(store: KeyValueStore) -> QueueSnapshot:
    """Last persisted queue state, for readers outside the worker. Empty when none."""
    raw = await store.get(QUEUE_STATE_KEY)
    if not raw:
        return QueueSnapshot()
    return QueueSnapshot.model_validate_json(raw)
