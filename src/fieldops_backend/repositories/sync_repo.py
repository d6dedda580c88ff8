from __future__ import annotations

from datetime import datetime
from typing import TypeVar

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.models import Invoice, TenantRow

RowT = TypeVar("RowT", bound=TenantRow)


async def get_entity(
    session: AsyncSession, model: type[RowT], entity_id: str, *, for_update: bool = False
) -> RowT | None:
    # Deliberately not tenant-filtered: callers need to tell "missing" from "owned by someone else".
    # populate_existing: the session outlives a mutation, so refresh rows other writers changed.
    stmt = (
        select(model)
        .where(col(model.id) == entity_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        # No-op on SQLite; row lock on PostgreSQL.
        stmt = stmt.with_for_update()
    return (await session.exec(stmt)).first()


async def list_changes(
    session: AsyncSession,
    model: type[RowT],
    *,
    user_id: int,
    since: datetime | None,
    after: tuple[datetime, str] | None,
    extra: list[ColumnElement[bool]],
    limit: int,
) -> tuple[list[RowT], bool]:
    """Keyset page ordered by (updated_at, id), fetching one extra row to detect more."""
    updated_at = col(model.updated_at)
    row_id = col(model.id)

    stmt = select(model).where(col(model.user_id) == user_id)
    for clause in extra:
        stmt = stmt.where(clause)
    if after is not None:
        after_ts, after_id = after
        stmt = stmt.where(
            sa.or_(
                updated_at > after_ts,
                sa.and_(updated_at == after_ts, row_id > after_id),
            )
        )
    elif since is not None:
        stmt = stmt.where(updated_at >= since)

    stmt = stmt.order_by(updated_at.asc(), row_id.asc()).limit(limit + 1)
    rows = list((await session.exec(stmt)).all())
    has_more = len(rows) > limit
    return rows[:limit], has_more


async def get_latest_invoice_number(
    session: AsyncSession, *, user_id: int, prefix: str
) -> str | None:
    # Includes soft-deleted invoices: numbers are never reused.
    result = await session.exec(
        select(Invoice.invoice_number)
        .where(Invoice.user_id == user_id)
        .where(col(Invoice.invoice_number).startswith(prefix))
        .order_by(col(Invoice.invoice_number).desc())
        .limit(1)
    )
    return result.first()


async def purge_deleted_before(
    session: AsyncSession, model: type[TenantRow], *, cutoff: datetime
) -> int:
    table = model.__table__  # pyright: ignore[reportAttributeAccessIssue]
    result = await session.exec(
        sa.delete(table)
        .where(table.c.deleted_at.is_not(None))
        .where(table.c.deleted_at < cutoff)
    )
    return int(result.rowcount or 0)
