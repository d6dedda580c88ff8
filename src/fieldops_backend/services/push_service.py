from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import (
    CurrentState,
    EntityAdapter,
    EntityValidationError,
    ForeignRef,
)
from fieldops_backend.adapters.registry import ADAPTERS_BY_TYPE
from fieldops_backend.domain.conflict_resolver import resolve
from fieldops_backend.entity_locks import entity_lock
from fieldops_backend.schemas_sync import PushResult, PushStatus, SyncMutation
from fieldops_backend.services import idempotency_ledger
from fieldops_backend.sync_utils import clamp_client_updated_at

logger = logging.getLogger(__name__)

REASON_OWNERSHIP = "ownership"
REASON_NOT_FOUND = "not found"
REASON_STORAGE_ERROR = "storage error"
REASON_ENTITY_TYPE_MISMATCH = "entityType mismatch"

# (result, whether it is terminal and belongs in the ledger)
_Outcome = tuple[PushResult, bool]


def _result(
    mutation: SyncMutation,
    status: PushStatus,
    *,
    server_entity: dict[str, object] | None = None,
    reason: str | None = None,
) -> PushResult:
    return PushResult(
        mutation_id=mutation.mutation_id,
        status=status,
        server_entity=server_entity,
        reason=reason,
    )


async def _check_foreign_refs(
    session: AsyncSession, *, user_id: int, mutation: SyncMutation, refs: list[ForeignRef]
) -> _Outcome | None:
    for ref in refs:
        state = await ADAPTERS_BY_TYPE[ref.target].get_current(session, ref.entity_id)
        if not state.exists:
            # The referenced record may still be queued on the device; let the client retry.
            return _result(mutation, "rejected", reason=f"{ref.key} not found"), False
        if state.owner_id != user_id:
            return _result(mutation, "rejected", reason=REASON_OWNERSHIP), True
        if state.deleted:
            return _result(mutation, "rejected", reason=f"{ref.key} deleted"), True
    return None


async def _apply(
    session: AsyncSession,
    *,
    user_id: int,
    adapter: EntityAdapter,
    mutation: SyncMutation,
    current: CurrentState,
) -> _Outcome:
    data = mutation.data or {}
    client_updated_at = clamp_client_updated_at(mutation.client_updated_at)
    row = current.row

    if mutation.type == "create":
        if row is None:
            created = await adapter.create(
                session,
                user_id=user_id,
                entity_id=mutation.entity_id,
                data=data,
                mutation_id=mutation.mutation_id,
            )
            return _result(mutation, "applied", server_entity=adapter.serialize(created)), True
        if resolve(current.updated_at, client_updated_at) == "conflict":
            return _result(mutation, "conflict", server_entity=adapter.serialize(row)), True
        # A newer create replaces the record, reviving it if it was soft-deleted.
        created = await adapter.create(
            session,
            user_id=user_id,
            entity_id=mutation.entity_id,
            data=data,
            mutation_id=mutation.mutation_id,
            existing=row,
        )
        return _result(mutation, "applied", server_entity=adapter.serialize(created)), True

    if mutation.type == "update":
        if row is None:
            return _result(mutation, "rejected", reason=REASON_NOT_FOUND), False
        if current.deleted or resolve(current.updated_at, client_updated_at) == "conflict":
            return _result(mutation, "conflict", server_entity=adapter.serialize(row)), True
        updated = await adapter.update(
            session, row=row, data=data, mutation_id=mutation.mutation_id
        )
        return _result(mutation, "applied", server_entity=adapter.serialize(updated)), True

    # delete
    if row is None:
        # Created and deleted offline before it ever reached the server.
        return _result(mutation, "applied"), True
    if current.deleted:
        return _result(mutation, "applied", server_entity=adapter.serialize(row)), True
    if resolve(current.updated_at, client_updated_at) == "conflict":
        return _result(mutation, "conflict", server_entity=adapter.serialize(row)), True
    deleted = await adapter.soft_delete(session, row=row, mutation_id=mutation.mutation_id)
    return _result(mutation, "applied", server_entity=adapter.serialize(deleted)), True


async def _decide(
    session: AsyncSession, *, user_id: int, adapter: EntityAdapter, mutation: SyncMutation
) -> _Outcome:
    current = await adapter.get_current(session, mutation.entity_id, for_update=True)
    if current.exists and current.owner_id != user_id:
        return _result(mutation, "rejected", reason=REASON_OWNERSHIP), True

    if current.row is not None and current.row.last_mutation_id == mutation.mutation_id:
        # Already applied; only the ledger entry is missing.
        return _result(mutation, "applied", server_entity=adapter.serialize(current.row)), True

    try:
        if mutation.type != "delete":
            refs = adapter.foreign_refs(mutation.data or {})
            rejected = await _check_foreign_refs(
                session, user_id=user_id, mutation=mutation, refs=refs
            )
            if rejected is not None:
                return rejected
        return await _apply(
            session, user_id=user_id, adapter=adapter, mutation=mutation, current=current
        )
    except EntityValidationError as exc:
        return _result(mutation, "rejected", reason=str(exc)), True


async def _process_in_tx(
    session: AsyncSession, *, user_id: int, adapter: EntityAdapter, mutation: SyncMutation
) -> PushResult:
    replay = await idempotency_ledger.get(
        session, user_id=user_id, mutation_id=mutation.mutation_id
    )
    if replay is not None:
        logger.debug("duplicate mutation user_id=%s mutation_id=%s", user_id, mutation.mutation_id)
        return replay

    if mutation.entity_type is not None and mutation.entity_type != adapter.entity_type:
        return _result(mutation, "rejected", reason=REASON_ENTITY_TYPE_MISMATCH)

    result, terminal = await _decide(session, user_id=user_id, adapter=adapter, mutation=mutation)
    if result.status == "conflict":
        logger.debug(
            "conflict user_id=%s entity=%s id=%s mutation_id=%s",
            user_id,
            adapter.entity_type,
            mutation.entity_id,
            mutation.mutation_id,
        )
    if terminal:
        await idempotency_ledger.put(
            session,
            user_id=user_id,
            entity_type=adapter.entity_type,
            mutation=mutation,
            result=result,
        )
    return result


async def _replay_after_race(
    session: AsyncSession, *, user_id: int, mutation: SyncMutation
) -> PushResult | None:
    try:
        async with session.begin():
            return await idempotency_ledger.get(
                session, user_id=user_id, mutation_id=mutation.mutation_id
            )
    except SQLAlchemyError:
        logger.warning(
            "ledger re-read failed user_id=%s mutation_id=%s",
            user_id,
            mutation.mutation_id,
            exc_info=True,
        )
        return None


async def process_mutation(
    session: AsyncSession, *, user_id: int, adapter: EntityAdapter, mutation: SyncMutation
) -> PushResult:
    async with entity_lock(
        user_id=user_id, entity_type=adapter.entity_type, entity_id=mutation.entity_id
    ):
        try:
            if session.in_transaction():
                # Reads on the same session (auth, a previous pull) autobegin a transaction.
                await session.commit()
            async with session.begin():
                return await _process_in_tx(
                    session, user_id=user_id, adapter=adapter, mutation=mutation
                )
        except IntegrityError:
            # Another worker may have committed the same mutation id first.
            replay = await _replay_after_race(session, user_id=user_id, mutation=mutation)
            if replay is not None:
                return replay
            logger.exception(
                "push integrity error user_id=%s entity=%s id=%s mutation_id=%s",
                user_id,
                adapter.entity_type,
                mutation.entity_id,
                mutation.mutation_id,
            )
        except SQLAlchemyError:
            logger.exception(
                "push storage error user_id=%s entity=%s id=%s mutation_id=%s",
                user_id,
                adapter.entity_type,
                mutation.entity_id,
                mutation.mutation_id,
            )
    # Not ledgered: the client retries with the same mutation id.
    return _result(mutation, "rejected", reason=REASON_STORAGE_ERROR)


async def push(
    *,
    session: AsyncSession,
    user_id: int,
    adapter: EntityAdapter,
    mutations: list[SyncMutation],
) -> list[PushResult]:
    """One result per mutation, in input order.

    Each mutation runs in its own transaction (ledger lookup, checks, write and
    ledger entry commit or roll back together); a failure never stops the batch.
    """
    results: list[PushResult] = []
    for mutation in mutations:
        results.append(
            await process_mutation(session, user_id=user_id, adapter=adapter, mutation=mutation)
        )
    return results
