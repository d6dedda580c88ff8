from __future__ import annotations

from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select

from fieldops_backend.adapters.base import EntityAdapter, SyncField
from fieldops_backend.config import settings
from fieldops_backend.models import Client, WorkOrder


def assignment_window_clause(anchor: datetime) -> ColumnElement[bool]:
    """Work orders the technician is working on around `anchor`."""
    start = anchor - timedelta(days=settings.sync_assigned_past_days)
    end = anchor + timedelta(days=settings.sync_assigned_future_days)
    scheduled = col(WorkOrder.scheduled_date)
    return sa.or_(
        sa.and_(scheduled >= start, scheduled <= end),
        sa.and_(scheduled.is_(None), col(WorkOrder.created_at) >= start),
    )


def assigned_client_ids(*, user_id: int, anchor: datetime):  # type: ignore[no-untyped-def]
    return (
        select(WorkOrder.client_id)
        .where(WorkOrder.user_id == user_id)
        .where(col(WorkOrder.deleted_at).is_(None))
        .where(assignment_window_clause(anchor))
    )


class ClientAdapter(EntityAdapter):
    entity_type = "Client"
    path = "clients"
    model = Client
    fields = (
        SyncField("name", "name", required=True, nullable=False, max_length=200),
        SyncField("email", "email", max_length=320),
        SyncField("phone", "phone", max_length=64),
        SyncField("address", "address", max_length=500),
        SyncField("city", "city", max_length=120),
        SyncField("state", "state", max_length=64),
        SyncField("zipCode", "zip_code", max_length=32),
        SyncField("taxId", "tax_id", max_length=64),
        SyncField("notes", "notes"),
    )

    def assigned_clause(self, *, user_id: int, anchor: datetime) -> ColumnElement[bool] | None:
        return col(Client.id).in_(assigned_client_ids(user_id=user_id, anchor=anchor))

    def serialize_extra(self, row: Client, out: dict[str, object]) -> None:
        # Mobile stores the owner as technicianId and derives visibility from isActive.
        out["technicianId"] = row.user_id
        out["isActive"] = row.deleted_at is None
