from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import EntityAdapter
from fieldops_backend.config import settings
from fieldops_backend.db import get_session
from fieldops_backend.deps import get_current_user, get_entity_adapter
from fieldops_backend.domain.sync_cursor import SyncScope
from fieldops_backend.models import User, utc_now
from fieldops_backend.rate_limiting import SCOPE_SYNC_PUSH, build_user_key, enforce_rate_limit
from fieldops_backend.schemas_sync import SyncPullResponse, SyncPushRequest, SyncPushResponse
from fieldops_backend.services import pull_service, push_service

# GET /{entity}/sync: one page of changes; POST /{entity}/sync/mutations: apply a batch.
router = APIRouter(tags=["sync"])


@router.get("/{entity}/sync", response_model=SyncPullResponse)
async def pull_changes(
    since: datetime | None = None,
    cursor: Annotated[str | None, Query(max_length=2048)] = None,
    # Out-of-range limits are clamped, not rejected.
    limit: int | None = None,
    scope: SyncScope = "all",
    adapter: EntityAdapter = Depends(get_entity_adapter),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncPullResponse:
    assert user.id is not None
    return await pull_service.pull(
        session=session,
        user_id=int(user.id),
        adapter=adapter,
        since=since,
        cursor=cursor,
        limit=limit,
        scope=scope,
    )


@router.post("/{entity}/sync/mutations", response_model=SyncPushResponse)
async def push_mutations(
    payload: SyncPushRequest,
    adapter: EntityAdapter = Depends(get_entity_adapter),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncPushResponse:
    assert user.id is not None
    user_id = int(user.id)

    max_batch = int(settings.sync_push_max_mutations)
    if max_batch > 0 and len(payload.mutations) > max_batch:
        raise HTTPException(
            status_code=413,
            detail={
                "message": "too many mutations",
                "details": {"max": max_batch, "received": len(payload.mutations)},
            },
        )

    await enforce_rate_limit(
        scope=SCOPE_SYNC_PUSH,
        key=build_user_key(user_id),
        limit=settings.sync_push_rate_limit_per_user,
        window_seconds=settings.rate_limit_window_seconds,
    )

    results = await push_service.push(
        session=session,
        user_id=user_id,
        adapter=adapter,
        mutations=payload.mutations,
    )
    return SyncPushResponse(results=results, server_time=utc_now())
