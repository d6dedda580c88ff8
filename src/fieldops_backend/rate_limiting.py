from __future__ import annotations

import logging

import sqlalchemy as sa
from fastapi import HTTPException, status
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.config import settings
from fieldops_backend.db import session_scope
from fieldops_backend.db_urls import is_postgres_url, is_sqlite_url
from fieldops_backend.models import utc_now
from fieldops_backend.sync_utils import now_ms

logger = logging.getLogger(__name__)

SCOPE_SYNC_PUSH = "sync_push"

_last_cleanup_ms = 0


async def _maybe_cleanup(*, session: AsyncSession, now_ms_value: int) -> None:
    # Opportunistic cleanup keeps the counter table bounded.
    global _last_cleanup_ms

    interval_s = int(settings.rate_limit_cleanup_interval_seconds)
    retention_s = int(settings.rate_limit_retention_seconds)
    if interval_s <= 0 or retention_s <= 0:
        return

    if _last_cleanup_ms and now_ms_value - _last_cleanup_ms < interval_s * 1000:
        return
    _last_cleanup_ms = now_ms_value

    cutoff_ms = now_ms_value - retention_s * 1000
    if cutoff_ms <= 0:
        return

    table = SQLModel.metadata.tables["rate_limit_counters"]
    await session.exec(sa.delete(table).where(table.c.window_start_ms < int(cutoff_ms)))


def window_start_ms(*, now_ms_value: int, window_seconds: int) -> int:
    window_ms = int(window_seconds) * 1000
    if window_ms <= 0:
        return now_ms_value
    return (now_ms_value // window_ms) * window_ms


def build_user_key(user_id: int) -> str:
    return f"user:{int(user_id)}"


async def _hit_counter(
    *, session: AsyncSession, scope: str, key: str, window_start: int
) -> int:
    table = SQLModel.metadata.tables["rate_limit_counters"]
    now = utc_now()
    values: dict[str, object] = {
        "scope": scope,
        "key": key,
        "window_start_ms": int(window_start),
        "count": 1,
        "created_at": now,
        "updated_at": now,
    }

    if is_sqlite_url(settings.database_url):
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif is_postgres_url(settings.database_url):
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        raise RuntimeError("rate limiting needs SQLite or PostgreSQL")

    stmt = dialect_insert(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["scope", "key", "window_start_ms"],
        set_={"count": table.c.count + 1, "updated_at": now},
    ).returning(table.c.count)
    row = (await session.exec(stmt)).first()
    return 0 if row is None else int(row[0])


async def enforce_rate_limit(*, scope: str, key: str, limit: int, window_seconds: int) -> None:
    """Count one hit in the fixed window and raise 429 once over `limit`.

    Disabled when limit or window is <= 0. Limiter failures are logged and
    never block the request.
    """
    limit_i = int(limit)
    window_s = int(window_seconds)
    if limit_i <= 0 or window_s <= 0:
        return

    now_ms_value = now_ms()
    start_ms = window_start_ms(now_ms_value=now_ms_value, window_seconds=window_s)

    async with session_scope() as session:
        try:
            count = await _hit_counter(session=session, scope=scope, key=key, window_start=start_ms)
            await _maybe_cleanup(session=session, now_ms_value=now_ms_value)
            await session.commit()
        except Exception:
            logger.warning("rate limit check failed scope=%s", scope, exc_info=True)
            return

    if count <= limit_i:
        return

    retry_after_s = max(1, (start_ms + window_s * 1000 - now_ms_value + 999) // 1000)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="too many requests",
        headers={"Retry-After": str(retry_after_s)},
    )
