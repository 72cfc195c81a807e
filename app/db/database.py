"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_task_session():
    """
    Create a fresh database session for Celery tasks.

    The module-level engine is bound to the loop it was first used on; every
    Celery task runs in a new loop, so tasks get their own short-lived engine.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )
    task_session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    try:
        async with task_session_maker() as session:
            yield session
    finally:
        await task_engine.dispose()


async def create_tables(session: AsyncSession | None = None) -> None:
    """create_all for missing tables.

    The API calls it on startup with the module engine; the worker passes a
    task session because it cannot reuse the module engine across loops.
    """
    # רישום המודלים ב-metadata לפני create_all
    import app.db.models  # noqa: F401

    if session is None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return

    await session.run_sync(lambda s: Base.metadata.create_all(bind=s.connection()))
    await session.commit()
