from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.models import ProcessedMutation


async def get_processed_mutation(
    session: AsyncSession, *, user_id: int, mutation_id: str
) -> ProcessedMutation | None:
    result = await session.exec(
        select(ProcessedMutation)
        .where(ProcessedMutation.user_id == user_id)
        .where(ProcessedMutation.mutation_id == mutation_id)
    )
    return result.first()


async def add_processed_mutation(session: AsyncSession, row: ProcessedMutation) -> None:
    session.add(row)
    # Flush so a concurrent duplicate surfaces as IntegrityError inside the mutation tx.
    await session.flush()


async def delete_processed_before(session: AsyncSession, *, cutoff: datetime) -> int:
    table = SQLModel.metadata.tables["processed_mutations"]
    result = await session.exec(sa.delete(table).where(table.c.created_at < cutoff))
    return int(result.rowcount or 0)
