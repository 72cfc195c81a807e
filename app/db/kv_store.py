"""
Key/Value persistence surface.

Two backends behind one small contract:

- SqlKeyValueStore - durable rows in ``kv_entries``; holds the delivery queue
  snapshot, per-platform counters, templates and app state.
- RedisKeyValueStore - volatile keys with TTL; holds the per-recipient
  last-response table and call history.

Values are strings (callers serialize JSON). Writes are last-write-wins.
"""
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import redis_client
from app.db.models.kv_entry import KeyValueEntry


SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _utcnow() -> datetime:
    # naive UTC - אותו פורמט שנשמר ב-DateTime ללא timezone
    return datetime.now(timezone.utc).replace(tzinfo=None)


class KeyValueStore(Protocol):
    """Durable key/value contract used by the queue, templates and rules"""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class SqlKeyValueStore:
    """SQLAlchemy-backed store.

    ``session_factory`` is anything that yields an ``AsyncSession`` from
    ``async with factory()``: ``AsyncSessionLocal`` in the API process,
    ``get_task_session`` in Celery tasks, an aiosqlite sessionmaker in tests.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        if session_factory is None:
            from app.db.database import get_task_session

            session_factory = get_task_session
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= _utcnow():
                await session.delete(entry)
                await session.commit()
                return None
            return entry.value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = _utcnow() + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        async with self._session_factory() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(
                    key=key,
                    value=value,
                    updated_at=_utcnow(),
                    expires_at=expires_at,
                ))
            else:
                entry.value = value
                entry.updated_at = _utcnow()
                entry.expires_at = expires_at
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()

    async def purge_expired(self) -> int:
        """מחיקת רשומות שפג תוקפן - נקרא מ-cleanup השעתי"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KeyValueEntry.key).where(
                    KeyValueEntry.expires_at.is_not(None),
                    KeyValueEntry.expires_at <= _utcnow(),
                )
            )
            keys = list(result.scalars().all())
            if keys:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key.in_(keys)))
                await session.commit()
        return len(keys)


class RedisKeyValueStore:
    """Redis-backed store. The client is fetched per call so tasks survive loop changes."""

    def __init__(self, prefix: str = "servicetext") -> None:
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> str | None:
        redis = await redis_client.get_redis()
        return await redis.get(self._key(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        redis = await redis_client.get_redis()
        if ttl_seconds:
            await redis.set(self._key(key), value, ex=ttl_seconds)
        else:
            await redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        redis = await redis_client.get_redis()
        await redis.delete(self._key(key))
