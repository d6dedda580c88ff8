from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import EntityAdapter
from fieldops_backend.config import settings
from fieldops_backend.domain.sync_cursor import (
    InvalidCursorError,
    SyncCursor,
    SyncScope,
    decode_cursor,
    encode_cursor,
)
from fieldops_backend.models import as_utc, utc_now
from fieldops_backend.repositories import sync_repo
from fieldops_backend.schemas_sync import SyncPullResponse

logger = logging.getLogger(__name__)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return settings.sync_pull_default_limit
    return max(1, min(int(limit), settings.sync_pull_max_limit))


def _scope_filters(
    adapter: EntityAdapter, *, user_id: int, scope: SyncScope, anchor: datetime
) -> list[ColumnElement[bool]]:
    if scope == "recent":
        start = anchor - timedelta(days=settings.sync_recent_window_days)
        return [col(adapter.model.updated_at) >= start]
    if scope == "assigned":
        clause = adapter.assigned_clause(user_id=user_id, anchor=anchor)
        return [] if clause is None else [clause]
    return []


async def pull(
    *,
    session: AsyncSession,
    user_id: int,
    adapter: EntityAdapter,
    since: datetime | None = None,
    cursor: str | None = None,
    limit: int | None = None,
    scope: SyncScope = "all",
) -> SyncPullResponse:
    """One page of records changed since the last sync point, oldest first."""
    page_size = clamp_limit(limit)
    server_time = utc_now()

    resume: SyncCursor | None = None
    if cursor:
        try:
            resume = decode_cursor(cursor, secret=settings.sync_cursor_secret)
        except InvalidCursorError as exc:
            # Clients treat a failed pull as "retry later"; restarting from `since` is safer.
            logger.warning(
                "ignoring sync cursor user_id=%s entity=%s: %s", user_id, adapter.entity_type, exc
            )

    if resume is not None and resume.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cursor not owned by user")

    after: tuple[datetime, str] | None = None
    anchor = server_time
    if resume is not None:
        # The session's original scope and anchor win over whatever the client resent.
        scope = resume.scope
        anchor = resume.anchor
        after = (resume.updated_at, resume.entity_id)

    rows, has_more = await sync_repo.list_changes(
        session,
        adapter.model,
        user_id=user_id,
        since=as_utc(since),
        after=after,
        extra=_scope_filters(adapter, user_id=user_id, scope=scope, anchor=anchor),
        limit=page_size,
    )

    next_cursor: str | None = None
    if has_more and rows:
        last = rows[-1]
        updated_at = as_utc(last.updated_at)
        assert updated_at is not None
        next_cursor = encode_cursor(
            SyncCursor(
                user_id=user_id,
                updated_at=updated_at,
                entity_id=last.id,
                scope=scope,
                anchor=anchor,
            ),
            secret=settings.sync_cursor_secret,
        )

    # Rows stamped shortly before the session started may commit after it; the
    # sync point handed back overlaps them so the next pull picks them up.
    margin = timedelta(seconds=max(0, settings.sync_pull_commit_margin_seconds))
    return SyncPullResponse(
        data=[adapter.serialize(row) for row in rows],
        next_cursor=next_cursor,
        has_more=has_more,
        server_time=anchor - margin,
    )
