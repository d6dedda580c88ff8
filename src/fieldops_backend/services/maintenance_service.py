from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.registry import all_adapters
from fieldops_backend.config import settings
from fieldops_backend.db import session_scope
from fieldops_backend.models import utc_now
from fieldops_backend.repositories import sync_repo
from fieldops_backend.services import idempotency_ledger

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceSummary:
    ledger_pruned: int = 0
    tombstones_purged: dict[str, int] = field(default_factory=dict)


async def prune_ledger(session: AsyncSession, *, now: datetime | None = None) -> int:
    days = int(settings.sync_ledger_retention_days)
    if days <= 0:
        return 0
    cutoff = (now or utc_now()) - timedelta(days=days)
    return await idempotency_ledger.prune(session, older_than=cutoff)


async def purge_tombstones(
    session: AsyncSession, *, now: datetime | None = None
) -> dict[str, int]:
    """Hard-delete soft-deleted records past retention.

    A device that has not pulled since before the cutoff never sees those
    deletions; it must do a full resync.
    """
    days = int(settings.sync_tombstone_retention_days)
    if days <= 0:
        return {}
    cutoff = (now or utc_now()) - timedelta(days=days)
    purged: dict[str, int] = {}
    for adapter in all_adapters():
        purged[adapter.entity_type] = await sync_repo.purge_deleted_before(
            session, adapter.model, cutoff=cutoff
        )
    return purged


async def run_maintenance(*, now: datetime | None = None) -> MaintenanceSummary:
    async with session_scope() as session:
        summary = MaintenanceSummary(
            ledger_pruned=await prune_ledger(session, now=now),
            tombstones_purged=await purge_tombstones(session, now=now),
        )
        await session.commit()

    logger.info(
        "sync maintenance done ledger_pruned=%s tombstones_purged=%s",
        summary.ledger_pruned,
        summary.tombstones_purged,
    )
    return summary
