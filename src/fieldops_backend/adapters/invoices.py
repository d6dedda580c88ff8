from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Mapping, cast

from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import (
    EntityAdapter,
    EntityValidationError,
    SyncField,
    check_money,
)
from fieldops_backend.adapters.clients import assigned_client_ids
from fieldops_backend.models import Invoice, TenantRow, utc_now
from fieldops_backend.repositories import sync_repo

INVOICE_STATUSES = frozenset({"PENDING", "PAID", "OVERDUE", "CANCELLED"})

_DEFAULT_DUE_DAYS = 30
_CENTS = Decimal("0.01")


async def next_invoice_number(session: AsyncSession, *, user_id: int, year: int) -> str:
    """INV-<year>-<NNNN>, sequential per tenant and year."""
    prefix = f"INV-{year}-"
    last = await sync_repo.get_latest_invoice_number(session, user_id=user_id, prefix=prefix)
    next_number = 1
    if last:
        tail = last[len(prefix) :]
        if tail.isdigit():
            next_number = int(tail) + 1
    return f"{prefix}{next_number:04d}"


class InvoiceAdapter(EntityAdapter):
    entity_type = "Invoice"
    path = "invoices"
    model = Invoice
    fields = (
        SyncField("clientId", "client_id", required=True, nullable=False, max_length=64),
        SyncField("workOrderId", "work_order_id", max_length=64),
        SyncField("invoiceNumber", "invoice_number", writable=False),
        SyncField("status", "status", nullable=False, choices=INVOICE_STATUSES),
        SyncField("subtotal", "subtotal", kind="decimal", nullable=False),
        SyncField("tax", "tax", kind="decimal", nullable=False),
        SyncField("discount", "discount", kind="decimal", nullable=False),
        SyncField("total", "total", kind="decimal", writable=False),
        SyncField("dueDate", "due_date", kind="datetime", nullable=False),
        SyncField("paidAt", "paid_date", kind="datetime"),
        SyncField("notes", "notes"),
    )
    foreign_keys = (("clientId", "Client"), ("workOrderId", "WorkOrder"))

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
        for attr in ("subtotal", "tax", "discount"):
            amount = values.get(attr)
            if isinstance(amount, Decimal) and amount < 0:
                raise EntityValidationError(f"invalid {attr}")

        if not creating or row is not None:
            # Revived tombstones keep their original number.
            return

        now = utc_now()
        values["invoice_number"] = await next_invoice_number(
            session, user_id=user_id, year=now.year
        )
        if "due_date" not in values:
            values["due_date"] = now + timedelta(days=_DEFAULT_DUE_DAYS)

    def finalize(self, row: TenantRow) -> None:
        invoice = cast(Invoice, row)
        subtotal = Decimal(str(invoice.subtotal or 0))
        tax = Decimal(str(invoice.tax or 0))
        discount = Decimal(str(invoice.discount or 0))
        invoice.total = check_money((subtotal + tax - discount).quantize(_CENTS), key="total")

    def assigned_clause(self, *, user_id: int, anchor: datetime) -> ColumnElement[bool] | None:
        return col(Invoice.client_id).in_(assigned_client_ids(user_id=user_id, anchor=anchor))

    def serialize_extra(self, row: Invoice, out: dict[str, object]) -> None:
        out["technicianId"] = row.user_id
