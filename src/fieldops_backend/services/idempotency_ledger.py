from __future__ import annotations

from datetime import datetime
from typing import cast

from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.models import ProcessedMutation
from fieldops_backend.repositories import ledger_repo
from fieldops_backend.schemas_sync import PushResult, StoredStatus, SyncMutation


async def get(session: AsyncSession, *, user_id: int, mutation_id: str) -> PushResult | None:
    """Stored outcome replayed as `duplicate`, or None when never processed."""
    row = await ledger_repo.get_processed_mutation(
        session, user_id=user_id, mutation_id=mutation_id
    )
    if row is None:
        return None
    return PushResult(
        mutation_id=row.mutation_id,
        status="duplicate",
        server_entity=row.server_entity_json,
        reason=row.reason,
        original_status=cast(StoredStatus, row.status),
    )


async def put(
    session: AsyncSession,
    *,
    user_id: int,
    entity_type: str,
    mutation: SyncMutation,
    result: PushResult,
) -> None:
    # Must run inside the transaction of the write it records.
    if result.status == "duplicate":
        raise ValueError("duplicate results are never stored")
    await ledger_repo.add_processed_mutation(
        session,
        ProcessedMutation(
            user_id=user_id,
            mutation_id=mutation.mutation_id,
            entity_type=entity_type,
            entity_id=mutation.entity_id,
            op=mutation.type,
            status=result.status,
            reason=result.reason,
            server_entity_json=result.server_entity,
        ),
    )


async def prune(session: AsyncSession, *, older_than: datetime) -> int:
    return await ledger_repo.delete_processed_before(session, cutoff=older_than)
