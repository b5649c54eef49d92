"""
Database engines and sessions.

The API uses the async engine (asyncpg) through ``get_db``. Celery tasks are
synchronous and open a short-lived ``Session`` from ``SessionLocal`` per run.
Engines are created on first use so importing models never opens a pool.
"""
from collections.abc import AsyncIterator
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ledgerjobs.core.config import settings


class Base(DeclarativeBase):
    pass


@lru_cache
def get_sync_engine() -> Engine:
    return create_engine(settings.database_url_sync, pool_pre_ping=True)


@lru_cache
def get_async_engine() -> AsyncEngine:
    return create_async_engine(settings.database_url, pool_pre_ping=True)


def SessionLocal() -> Session:
    """Open a sync session for worker code. Caller closes it (use ``with``)."""
    return sessionmaker(bind=get_sync_engine(), expire_on_commit=False)()


async def get_db() -> AsyncIterator[AsyncSession]:
    factory = async_sessionmaker(get_async_engine(), expire_on_commit=False)
    async with factory() as session:
        yield session
