from __future__ import annotations

from datetime import datetime
from typing import Mapping, cast

from sqlalchemy.sql.elements import ColumnElement
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import EntityAdapter, EntityValidationError, SyncField
from fieldops_backend.adapters.clients import assignment_window_clause
from fieldops_backend.models import TenantRow, WorkOrder, utc_now

WORK_ORDER_STATUSES = frozenset({"SCHEDULED", "IN_PROGRESS", "DONE", "CANCELED"})

VALID_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "SCHEDULED": frozenset({"IN_PROGRESS", "CANCELED"}),
    "IN_PROGRESS": frozenset({"DONE", "CANCELED"}),
    "DONE": frozenset(),
    "CANCELED": frozenset(),
}


class WorkOrderAdapter(EntityAdapter):
    entity_type = "WorkOrder"
    path = "work-orders"
    model = WorkOrder
    fields = (
        SyncField("clientId", "client_id", required=True, nullable=False, max_length=64),
        SyncField("quoteId", "quote_id", max_length=64),
        SyncField("title", "title", required=True, nullable=False, max_length=300),
        SyncField("description", "description"),
        SyncField("status", "status", nullable=False, choices=WORK_ORDER_STATUSES),
        SyncField("scheduledDate", "scheduled_date", kind="datetime"),
        SyncField("scheduledStartTime", "scheduled_start_time", kind="datetime"),
        SyncField("scheduledEndTime", "scheduled_end_time", kind="datetime"),
        SyncField("executionStart", "execution_start", kind="datetime"),
        SyncField("executionEnd", "execution_end", kind="datetime"),
        SyncField("address", "address", max_length=500),
        SyncField("notes", "notes"),
        SyncField("totalValue", "total_value", kind="decimal"),
    )
    foreign_keys = (("clientId", "Client"), ("quoteId", "Quote"))

    async def prepare(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        row: TenantRow | None,
        values: dict[str, object],
        data: Mapping[str, object],
        creating: bool,
    ) -> None:
        new_status = cast(str | None, values.get("status"))
        if new_status is None:
            return

        # Creating (or reviving) sets the status outright; updates must follow the lifecycle.
        if not creating and row is not None:
            current = cast(WorkOrder, row).status
            if new_status != current and new_status not in VALID_STATUS_TRANSITIONS.get(
                current, frozenset()
            ):
                raise EntityValidationError(
                    f"invalid status transition from {current} to {new_status}"
                )

        existing = cast(WorkOrder | None, row)
        now = utc_now()
        if new_status == "IN_PROGRESS":
            if values.get("execution_start") is None and (
                existing is None or existing.execution_start is None
            ):
                values["execution_start"] = now
        elif new_status == "DONE":
            if values.get("execution_end") is None and (
                existing is None or existing.execution_end is None
            ):
                values["execution_end"] = now

    def assigned_clause(self, *, user_id: int, anchor: datetime) -> ColumnElement[bool] | None:
        return assignment_window_clause(anchor)

    def serialize_extra(self, row: WorkOrder, out: dict[str, object]) -> None:
        out["technicianId"] = row.user_id
