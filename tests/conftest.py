"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory) and the SQL key/value store
- In-memory replacements for Redis and the key/value store
- Fake platform adapters and a controllable clock for the delivery queue
"""
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Iterable
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base
from app.db.kv_store import SqlKeyValueStore
from app.domain.models.messaging import (
    DeliveryStatus,
    MessagePlatform,
    MessagePriority,
    MessageRequest,
    MessageResponse,
)
from app.domain.services.delivery_queue import DeliveryQueueManager
from app.domain.services.platforms.base_adapter import BasePlatformAdapter
from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    import app.db.models  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sql_store(session_factory) -> SqlKeyValueStore:
    return SqlKeyValueStore(session_factory)


# ============================================================================
# In-memory doubles
# ============================================================================

class InMemoryKeyValueStore:
    """KeyValueStore for tests - TTLs are recorded, not enforced"""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_writes = False

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.data[key] = value
        if ttl_seconds:
            self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    async def purge_expired(self) -> int:
        return 0


class FakeRedis:
    """תחליף ל-Redis לבדיקות - in-memory dict עם ממשק תואם ומעקב TTL."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)
            self._lists.pop(key, None)

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> None:
        items = self._lists.get(key, [])
        self._lists[key] = items[start:end + 1]

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        return items[start:end + 1]

    def ttl_of(self, key: str) -> int | None:
        return self._ttls.get(key)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()
        self._lists.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis):
        yield _fake


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
async def test_client(memory_store: InMemoryKeyValueStore):
    """API client; every route reads and writes the in-memory store"""
    from httpx import AsyncClient, ASGITransport

    from app.api.dependencies.stores import get_kv_store
    from app.main import app

    app.dependency_overrides[get_kv_store] = lambda: memory_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


class FakeClock:
    """Controllable UTC clock for the queue and the rules"""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)  # Monday

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeAdapter(BasePlatformAdapter):
    """
    Scripted adapter. ``outcomes`` is consumed one item per send:
    a DeliveryStatus, or an Exception instance to raise. When exhausted,
    every further send succeeds.
    """

    def __init__(
        self,
        platform: MessagePlatform = MessagePlatform.WHATSAPP,
        outcomes: Iterable[DeliveryStatus | Exception] = (),
        enabled: bool = True,
    ) -> None:
        super().__init__(CircuitBreaker(f"fake-{platform.value}", CircuitBreakerConfig()))
        self._platform = platform
        self.outcomes = list(outcomes)
        self.enabled = enabled
        self.sent: list[MessageRequest] = []

    @property
    def platform(self) -> MessagePlatform:
        return self._platform

    def is_enabled(self) -> bool:
        return self.enabled

    async def send(self, request: MessageRequest) -> MessageResponse:
        self.sent.append(request.model_copy())
        outcome = self.outcomes.pop(0) if self.outcomes else DeliveryStatus.SENT
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == DeliveryStatus.FAILED:
            return self.error_response(request, "scripted failure")
        return self.success_response(request, status=outcome)


@pytest.fixture
def fake_adapters() -> dict[MessagePlatform, FakeAdapter]:
    return {platform: FakeAdapter(platform) for platform in MessagePlatform}


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def make_queue(fake_adapters, memory_store, clock) -> Callable[..., DeliveryQueueManager]:
    """Queue wired to fake adapters, the in-memory store and the fake clock. No real sleeping."""

    def _make(**overrides) -> DeliveryQueueManager:
        kwargs = {
            "batch_size": 5,
            "inter_message_delay": 1.0,
            "completed_retention": 100,
            "retention": timedelta(days=7),
            "retry_base_seconds": 60,
            "max_backoff_seconds": 900,
            "jitter_ratio": 0.3,
            "clock": clock,
            "sleep": _no_sleep,
        }
        adapters = overrides.pop("adapters", fake_adapters)
        store = overrides.pop("store", memory_store)
        kwargs.update(overrides)
        return DeliveryQueueManager(adapters, store, **kwargs)

    return _make


@pytest.fixture
def make_request(clock) -> Callable[..., MessageRequest]:
    counter = iter(range(1, 100_000))

    def _make(
        priority: MessagePriority = MessagePriority.NORMAL,
        platform: MessagePlatform = MessagePlatform.WHATSAPP,
        **fields,
    ) -> MessageRequest:
        n = next(counter)
        data = {
            "id": f"msg_{n:05d}",
            "platform": platform,
            "recipient": f"+35988812{n % 10000:04d}",
            "content": f"Здравейте #{n}",
            "priority": priority,
            "created_at": clock(),
        }
        data.update(fields)
        return MessageRequest(**data)

    return _make


# ============================================================================
# Global state resets
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_singletons():
    from app.domain.services.platforms import reset_adapters
    from app.workers.runtime import reset_runtime

    reset_adapters()
    reset_runtime()
    yield
    reset_adapters()
    reset_runtime()
