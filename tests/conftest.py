from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest

from fieldops_backend.config import settings
from fieldops_backend.db import dispose_engine_cache, get_engine, init_db, reset_engine_cache, session_scope
from fieldops_backend.models import User


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    # The stack (SQLAlchemy asyncio, aiosqlite, asyncio.Lock) is asyncio-only.
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Dispose the cached AsyncEngine (aiosqlite worker thread) while the
    # per-test event loop is still alive.
    _ = anyio_backend
    yield

    try:
        engine = get_engine()
    except Exception:
        engine = None

    if engine is not None:
        try:
            result = engine.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception:
            # Fall back to the sync pool dispose below.
            pass

    dispose_engine_cache()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    # Close the cached engine so CI can exit cleanly.
    _ = session, exitstatus
    dispose_engine_cache()


@pytest.fixture
async def sync_db(tmp_path: Path, anyio_backend: object) -> AsyncGenerator[Path, None]:  # noqa: ARG001
    """Fresh per-test SQLite database with all tables created."""
    old_db = settings.database_url
    db_path = tmp_path / "sync.db"
    settings.database_url = f"sqlite:///{db_path}"
    reset_engine_cache()
    await init_db()
    try:
        yield db_path
    finally:
        settings.database_url = old_db


@pytest.fixture
def create_user(sync_db: Path) -> Callable[..., Awaitable[int]]:  # noqa: ARG001
    async def _create(username: str, *, token: str | None = None, is_active: bool = True) -> int:
        async with session_scope() as session:
            user = User(
                username=username,
                api_token=token if token is not None else f"tok-{username}",
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            assert user.id is not None
            return int(user.id)

    return _create
