from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from fieldops_backend.adapters.clients import ClientAdapter
from fieldops_backend.adapters.registry import get_adapter
from fieldops_backend.db import session_scope
from fieldops_backend.entity_locks import active_lock_count
from fieldops_backend.models import Client, ProcessedMutation, as_utc
from fieldops_backend.schemas_sync import PushResult, SyncMutation
from fieldops_backend.services import push_service

CLIENTS = get_adapter("Client")
QUOTES = get_adapter("Quote")
assert CLIENTS is not None and QUOTES is not None


def _ts(value: object) -> datetime:
    assert isinstance(value, str)
    out = as_utc(datetime.fromisoformat(value))
    assert out is not None
    return out


def _mutation(
    op: str,
    entity_id: str,
    *,
    client_updated_at: datetime,
    data: dict[str, object] | None = None,
    mutation_id: str | None = None,
    entity_type: str | None = None,
) -> SyncMutation:
    return SyncMutation.model_validate(
        {
            "mutationId": mutation_id or str(uuid.uuid4()),
            "entityType": entity_type,
            "type": op,
            "entityId": entity_id,
            "data": data,
            "clientUpdatedAt": client_updated_at.isoformat(),
        }
    )


async def _push(user_id: int, mutations: list[SyncMutation], *, adapter=CLIENTS) -> list[PushResult]:  # type: ignore[no-untyped-def]
    async with session_scope() as session:
        return await push_service.push(
            session=session, user_id=user_id, adapter=adapter, mutations=mutations
        )


async def _load_client(entity_id: str) -> Client | None:
    async with session_scope() as session:
        return (await session.exec(select(Client).where(Client.id == entity_id))).first()


@pytest.mark.anyio
async def test_create_then_stale_update_then_replay(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_scenario")
    t0 = datetime.now(timezone.utc) - timedelta(minutes=5)

    [created] = await _push(
        user_id,
        [_mutation("create", "e1", client_updated_at=t0, data={"name": "Acme"}, mutation_id="m1")],
    )
    assert created.status == "applied"
    assert created.server_entity is not None
    server_updated_at = _ts(created.server_entity["updatedAt"])
    assert server_updated_at > t0

    stale = _mutation("update", "e1", client_updated_at=t0, data={"name": "X"}, mutation_id="m2")
    [conflict] = await _push(user_id, [stale])
    assert conflict.status == "conflict"
    assert conflict.server_entity is not None
    assert _ts(conflict.server_entity["updatedAt"]) == server_updated_at
    assert conflict.server_entity["name"] == "Acme"

    [replay] = await _push(user_id, [stale])
    assert replay.status == "duplicate"
    assert replay.original_status == "conflict"
    assert replay.server_entity == conflict.server_entity

    row = await _load_client("e1")
    assert row is not None and row.name == "Acme"


@pytest.mark.anyio
async def test_replayed_batch_returns_same_outcomes_and_changes_nothing(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_replay_batch")
    now = datetime.now(timezone.utc)
    batch = [
        _mutation("create", "c1", client_updated_at=now, data={"name": "One"}),
        _mutation("create", "c2", client_updated_at=now, data={"name": "Two"}),
        _mutation("update", "c1", client_updated_at=now + timedelta(seconds=1), data={"city": "Porto"}),
        _mutation("delete", "c2", client_updated_at=now + timedelta(seconds=1)),
        _mutation("create", "c3", client_updated_at=now, data={}),
    ]

    first = await _push(user_id, batch)
    assert [r.status for r in first] == ["applied", "applied", "applied", "applied", "rejected"]
    assert first[4].reason == "missing name"
    before = {cid: await _load_client(cid) for cid in ("c1", "c2")}

    second = await _push(user_id, batch)
    assert [r.status for r in second] == ["duplicate"] * 5
    assert [r.original_status for r in second] == [r.status for r in first]
    assert [r.mutation_id for r in second] == [m.mutation_id for m in batch]
    for a, b in zip(first, second):
        assert a.server_entity == b.server_entity
        assert a.reason == b.reason

    for cid, row in before.items():
        after = await _load_client(cid)
        assert row is not None and after is not None
        assert as_utc(after.updated_at) == as_utc(row.updated_at)
        assert after.name == row.name
        assert after.deleted_at == row.deleted_at

    async with session_scope() as session:
        entries = (
            await session.exec(select(ProcessedMutation).where(ProcessedMutation.user_id == user_id))
        ).all()
    assert len(entries) == 5


@pytest.mark.anyio
async def test_lww_convergence_between_two_devices(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_lww")
    base = datetime.now(timezone.utc) - timedelta(minutes=10)
    await _push(user_id, [_mutation("create", "shared", client_updated_at=base, data={"name": "v0"})])

    device_a_ts = datetime.now(timezone.utc)
    device_b_ts = device_a_ts - timedelta(seconds=30)

    [a] = await _push(
        user_id, [_mutation("update", "shared", client_updated_at=device_a_ts, data={"name": "A"})]
    )
    assert a.status == "applied"

    [b] = await _push(
        user_id, [_mutation("update", "shared", client_updated_at=device_b_ts, data={"name": "B"})]
    )
    assert b.status == "conflict"
    assert b.server_entity is not None and b.server_entity["name"] == "A"

    # Device B adopts the server copy, edits again, and pushes with a fresh timestamp.
    retry_ts = _ts(b.server_entity["updatedAt"]) + timedelta(seconds=1)
    [b2] = await _push(
        user_id, [_mutation("update", "shared", client_updated_at=retry_ts, data={"name": "B"})]
    )
    assert b2.status == "applied"
    assert b2.server_entity is not None and b2.server_entity["name"] == "B"
    assert _ts(b2.server_entity["updatedAt"]) > _ts(b.server_entity["updatedAt"])


@pytest.mark.anyio
async def test_equal_timestamps_always_conflict(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_tie")
    [created] = await _push(
        user_id,
        [_mutation("create", "tie", client_updated_at=datetime.now(timezone.utc), data={"name": "S"})],
    )
    assert created.server_entity is not None
    server_ts = _ts(created.server_entity["updatedAt"])

    for op in ("update", "delete", "create"):
        [result] = await _push(
            user_id,
            [_mutation(op, "tie", client_updated_at=server_ts, data={"name": "C"})],
        )
        assert result.status == "conflict", op
        assert result.server_entity is not None
        assert result.server_entity["name"] == "S"


@pytest.mark.anyio
async def test_cross_tenant_ids_and_foreign_keys_are_rejected(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    owner = await create_user("u_owner")
    intruder = await create_user("u_intruder")
    now = datetime.now(timezone.utc)
    await _push(owner, [_mutation("create", "owned", client_updated_at=now, data={"name": "Mine"})])

    later = now + timedelta(seconds=60)
    results = await _push(
        intruder,
        [
            _mutation("update", "owned", client_updated_at=later, data={"name": "Stolen"}),
            _mutation("delete", "owned", client_updated_at=later),
            _mutation("create", "owned", client_updated_at=later, data={"name": "Stolen"}),
        ],
    )
    assert [r.status for r in results] == ["rejected"] * 3
    assert {r.reason for r in results} == {"ownership"}
    assert all(r.server_entity is None for r in results)

    [quote] = await _push(
        intruder,
        [_mutation("create", "q1", client_updated_at=later, data={"clientId": "owned"})],
        adapter=QUOTES,
    )
    assert quote.status == "rejected"
    assert quote.reason == "ownership"

    row = await _load_client("owned")
    assert row is not None
    assert row.name == "Mine" and row.deleted_at is None and row.user_id == owner


@pytest.mark.anyio
async def test_missing_foreign_key_is_rejected_but_retryable(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_missing_fk")
    now = datetime.now(timezone.utc)
    quote = _mutation("create", "q1", client_updated_at=now, data={"clientId": "later"})

    [first] = await _push(user_id, [quote], adapter=QUOTES)
    assert first.status == "rejected"
    assert first.reason == "clientId not found"

    await _push(user_id, [_mutation("create", "later", client_updated_at=now, data={"name": "L"})])
    [retry] = await _push(user_id, [quote], adapter=QUOTES)
    assert retry.status == "applied"


@pytest.mark.anyio
async def test_delete_and_update_of_unknown_ids(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_unknown")
    now = datetime.now(timezone.utc)

    [deleted] = await _push(user_id, [_mutation("delete", "never-synced", client_updated_at=now)])
    assert deleted.status == "applied"
    assert deleted.server_entity is None

    update = _mutation("update", "ghost", client_updated_at=now, data={"name": "G"})
    [missing] = await _push(user_id, [update])
    assert missing.status == "rejected"
    assert missing.reason == "not found"

    # Not ledgered: once the create lands the same update applies.
    await _push(
        user_id,
        [_mutation("create", "ghost", client_updated_at=now - timedelta(minutes=1), data={"name": "g"})],
    )
    [applied] = await _push(
        user_id,
        [
            SyncMutation(
                mutation_id=update.mutation_id,
                type="update",
                entity_id="ghost",
                data={"name": "G"},
                client_updated_at=datetime.now(timezone.utc) + timedelta(seconds=5),
            )
        ],
    )
    assert applied.status == "applied"


@pytest.mark.anyio
async def test_tombstones_conflict_on_update_and_revive_on_newer_create(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_tombstone")
    t = datetime.now(timezone.utc)
    await _push(user_id, [_mutation("create", "tomb", client_updated_at=t, data={"name": "T"})])
    [deleted] = await _push(
        user_id, [_mutation("delete", "tomb", client_updated_at=t + timedelta(seconds=10))]
    )
    assert deleted.status == "applied"
    assert deleted.server_entity is not None and deleted.server_entity["deletedAt"] is not None
    assert deleted.server_entity["isActive"] is False

    future = _ts(deleted.server_entity["updatedAt"]) + timedelta(seconds=1)
    [update] = await _push(
        user_id, [_mutation("update", "tomb", client_updated_at=future, data={"name": "U"})]
    )
    assert update.status == "conflict"
    assert update.server_entity is not None and update.server_entity["deletedAt"] is not None

    [delete_again] = await _push(user_id, [_mutation("delete", "tomb", client_updated_at=future)])
    assert delete_again.status == "applied"

    [revived] = await _push(
        user_id, [_mutation("create", "tomb", client_updated_at=future, data={"name": "Back"})]
    )
    assert revived.status == "applied"
    assert revived.server_entity is not None
    assert revived.server_entity["deletedAt"] is None
    assert revived.server_entity["name"] == "Back"
    assert _ts(revived.server_entity["updatedAt"]) > _ts(deleted.server_entity["updatedAt"])


@pytest.mark.anyio
async def test_entity_type_mismatch_is_rejected(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_mismatch")
    [result] = await _push(
        user_id,
        [
            _mutation(
                "create",
                "x1",
                client_updated_at=datetime.now(timezone.utc),
                data={"name": "X"},
                entity_type="Invoice",
            )
        ],
    )
    assert result.status == "rejected"
    assert result.reason == "entityType mismatch"
    assert await _load_client("x1") is None


@pytest.mark.anyio
async def test_lost_ledger_entry_is_detected_by_last_mutation_id(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_lost_ledger")
    t = datetime.now(timezone.utc)
    first = _mutation("create", "lost", client_updated_at=t, data={"name": "Once"}, mutation_id="m-lost")
    [applied] = await _push(user_id, [first])
    assert applied.status == "applied"

    async with session_scope() as session:
        entry = (
            await session.exec(select(ProcessedMutation).where(ProcessedMutation.mutation_id == "m-lost"))
        ).one()
        await session.delete(entry)
        await session.commit()

    before = await _load_client("lost")
    [again] = await _push(user_id, [first])
    assert again.status == "applied"
    after = await _load_client("lost")
    assert before is not None and after is not None
    assert as_utc(after.updated_at) == as_utc(before.updated_at)


@pytest.mark.anyio
async def test_storage_error_rejects_one_mutation_and_batch_continues(
    create_user: Callable[..., Awaitable[int]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user_id = await create_user("u_storage")
    t = datetime.now(timezone.utc)
    await _push(user_id, [_mutation("create", "flaky", client_updated_at=t, data={"name": "F"})])

    original_update = ClientAdapter.update

    async def _failing_update(self, session, *, row, data, mutation_id):  # type: ignore[no-untyped-def]
        raise OperationalError("UPDATE clients", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ClientAdapter, "update", _failing_update)

    later = t + timedelta(seconds=30)
    flaky = _mutation("update", "flaky", client_updated_at=later, data={"name": "F2"})
    results = await _push(
        user_id,
        [
            _mutation("create", "before", client_updated_at=t, data={"name": "B"}),
            flaky,
            _mutation("create", "after", client_updated_at=t, data={"name": "A"}),
        ],
    )
    assert [r.status for r in results] == ["applied", "rejected", "applied"]
    assert results[1].reason == "storage error"
    assert await _load_client("before") is not None
    assert await _load_client("after") is not None

    # Retrying the same mutation id works once storage recovers.
    monkeypatch.setattr(ClientAdapter, "update", original_update)
    [retry] = await _push(user_id, [flaky])
    assert retry.status == "applied"
    assert retry.server_entity is not None and retry.server_entity["name"] == "F2"


@pytest.mark.anyio
async def test_push_on_session_with_open_read_transaction(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_open_tx")
    t = datetime.now(timezone.utc)

    async with session_scope() as session:
        # Same situation as the HTTP route: auth has already read through this session.
        await session.exec(select(Client))
        assert session.in_transaction()
        [result] = await push_service.push(
            session=session,
            user_id=user_id,
            adapter=CLIENTS,
            mutations=[_mutation("create", "after-read", client_updated_at=t, data={"name": "R"})],
        )

    assert result.status == "applied"
    assert await _load_client("after-read") is not None
    async with session_scope() as session:
        ledger = (
            await session.exec(
                select(ProcessedMutation).where(ProcessedMutation.user_id == user_id)
            )
        ).all()
    assert [row.status for row in ledger] == ["applied"]


@pytest.mark.anyio
async def test_concurrent_pushes_to_same_entity_do_not_lose_updates(
    create_user: Callable[..., Awaitable[int]],
) -> None:
    user_id = await create_user("u_concurrent")
    [created] = await _push(
        user_id,
        [_mutation("create", "hot", client_updated_at=datetime.now(timezone.utc), data={"name": "0"})],
    )
    assert created.server_entity is not None
    # Both devices saw the same server version and edited it.
    seen = _ts(created.server_entity["updatedAt"]) + timedelta(microseconds=1)

    results = await asyncio.gather(
        _push(user_id, [_mutation("update", "hot", client_updated_at=seen, data={"name": "A"})]),
        _push(user_id, [_mutation("update", "hot", client_updated_at=seen, data={"name": "B"})]),
    )
    statuses = sorted(r[0].status for r in results)
    assert statuses == ["applied", "conflict"]
    assert active_lock_count() == 0

    winner = next(r[0] for r in results if r[0].status == "applied")
    row = await _load_client("hot")
    assert row is not None and winner.server_entity is not None
    assert row.name == winner.server_entity["name"]
