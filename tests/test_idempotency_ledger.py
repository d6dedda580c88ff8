from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from fieldops_backend.db import session_scope
from fieldops_backend.models import ProcessedMutation
from fieldops_backend.schemas_sync import PushResult, SyncMutation
from fieldops_backend.services import idempotency_ledger


def _mutation(mutation_id: str = "m-1") -> SyncMutation:
    return SyncMutation(
        mutation_id=mutation_id,
        type="update",
        entity_id="client-1",
        data={"name": "X"},
        client_updated_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )


@pytest.mark.anyio
async def test_ledger_get_missing_returns_none(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_ledger_missing")
    async with session_scope() as session:
        assert await idempotency_ledger.get(session, user_id=user_id, mutation_id="nope") is None


@pytest.mark.anyio
async def test_ledger_replays_stored_outcome_as_duplicate(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_ledger_replay")
    stored = PushResult(
        mutation_id="m-1",
        status="conflict",
        server_entity={"id": "client-1", "name": "Server"},
        reason=None,
    )

    async with session_scope() as session:
        await idempotency_ledger.put(
            session, user_id=user_id, entity_type="Client", mutation=_mutation(), result=stored
        )
        await session.commit()

    async with session_scope() as session:
        replay = await idempotency_ledger.get(session, user_id=user_id, mutation_id="m-1")

    assert replay is not None
    assert replay.status == "duplicate"
    assert replay.original_status == "conflict"
    assert replay.server_entity == {"id": "client-1", "name": "Server"}
    assert replay.mutation_id == "m-1"


@pytest.mark.anyio
async def test_ledger_is_scoped_per_tenant(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    owner = await create_user("u_ledger_owner")
    other = await create_user("u_ledger_other")

    async with session_scope() as session:
        await idempotency_ledger.put(
            session,
            user_id=owner,
            entity_type="Client",
            mutation=_mutation(),
            result=PushResult(mutation_id="m-1", status="applied"),
        )
        await session.commit()

    async with session_scope() as session:
        assert await idempotency_ledger.get(session, user_id=other, mutation_id="m-1") is None
        # The same mutation id is free for another tenant.
        await idempotency_ledger.put(
            session,
            user_id=other,
            entity_type="Client",
            mutation=_mutation(),
            result=PushResult(mutation_id="m-1", status="rejected", reason="ownership"),
        )
        await session.commit()


@pytest.mark.anyio
async def test_ledger_rejects_second_entry_for_same_mutation(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_ledger_unique")
    result = PushResult(mutation_id="m-1", status="applied")

    async with session_scope() as session:
        await idempotency_ledger.put(
            session, user_id=user_id, entity_type="Client", mutation=_mutation(), result=result
        )
        await session.commit()

    async with session_scope() as session:
        with pytest.raises(IntegrityError):
            await idempotency_ledger.put(
                session, user_id=user_id, entity_type="Client", mutation=_mutation(), result=result
            )


@pytest.mark.anyio
async def test_ledger_never_stores_duplicates(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_ledger_dup")
    async with session_scope() as session:
        with pytest.raises(ValueError):
            await idempotency_ledger.put(
                session,
                user_id=user_id,
                entity_type="Client",
                mutation=_mutation(),
                result=PushResult(mutation_id="m-1", status="duplicate"),
            )


@pytest.mark.anyio
async def test_ledger_prune_removes_only_old_entries(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_ledger_prune")
    now = datetime.now(timezone.utc)

    async with session_scope() as session:
        for mutation_id, age in (("old", timedelta(days=45)), ("fresh", timedelta(days=1))):
            session.add(
                ProcessedMutation(
                    user_id=user_id,
                    mutation_id=mutation_id,
                    entity_type="Client",
                    entity_id="client-1",
                    op="update",
                    status="applied",
                    created_at=now - age,
                )
            )
        await session.commit()

    async with session_scope() as session:
        removed = await idempotency_ledger.prune(session, older_than=now - timedelta(days=30))
        await session.commit()

    assert removed == 1
    async with session_scope() as session:
        assert await idempotency_ledger.get(session, user_id=user_id, mutation_id="old") is None
        assert await idempotency_ledger.get(session, user_id=user_id, mutation_id="fresh") is not None
