from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.config import settings
from fieldops_backend.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async


def _create_async_engine(database_url: str) -> AsyncEngine:
    ensure_sqlite_parent_dir(database_url)
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # 允许测试/部署时覆写 DATABASE_URL 后通过 reset_engine_cache() 重建 engine
    return _create_async_engine(settings.database_url)


def dispose_engine_cache() -> None:
    if get_engine.cache_info().currsize:
        get_engine().sync_engine.dispose()
    get_engine.cache_clear()


def reset_engine_cache() -> None:
    dispose_engine_cache()


async def init_db() -> None:
    # 仅用于本地/测试场景兜底；生产以 Alembic 迁移为准
    from fieldops_backend import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def _session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session
