from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, cast

from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import (
    EntityAdapter,
    EntityValidationError,
    ForeignRef,
    SyncField,
    check_money,
    parse_money,
)
from fieldops_backend.adapters.catalog import ITEM_TYPES
from fieldops_backend.adapters.clients import assigned_client_ids
from fieldops_backend.models import Quote, TenantRow

QUOTE_STATUSES = frozenset({"DRAFT", "SENT", "APPROVED", "REJECTED", "EXPIRED"})

_QTY = Decimal("0.001")
_CENTS = Decimal("0.01")


def _parse_quantity(value: object, *, key: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise EntityValidationError(f"invalid {key}")
    try:
        qty = Decimal(str(value)).quantize(_QTY)
    except InvalidOperation:
        raise EntityValidationError(f"invalid {key}") from None
    if not qty.is_finite() or qty <= 0:
        raise EntityValidationError(f"invalid {key}")
    return check_money(qty, key=key)


def normalize_quote_lines(raw: object) -> list[dict[str, Any]]:
    """Validate line items and compute per-line totals server-side."""
    if not isinstance(raw, list):
        raise EntityValidationError("invalid items")

    lines: list[dict[str, Any]] = []
    for idx, obj in enumerate(cast(list[object], raw)):
        prefix = f"items[{idx}]"
        if not isinstance(obj, dict):
            raise EntityValidationError(f"invalid {prefix}")
        line = cast(dict[str, object], obj)

        name = line.get("name")
        if not isinstance(name, str) or not name.strip():
            raise EntityValidationError(f"missing {prefix}.name")

        quantity = _parse_quantity(line.get("quantity"), key=f"{prefix}.quantity")
        unit_price = parse_money(line.get("unitPrice"), key=f"{prefix}.unitPrice")
        discount = parse_money(line.get("discountValue") or 0, key=f"{prefix}.discountValue")
        if unit_price < 0 or discount < 0:
            raise EntityValidationError(f"invalid {prefix} price")

        line_total = check_money(
            (quantity * unit_price - discount).quantize(_CENTS), key=f"{prefix}.totalPrice"
        )

        item_type = str(line.get("type") or "PRODUCT")
        if item_type not in ITEM_TYPES:
            raise EntityValidationError(f"invalid {prefix}.type: {item_type}")

        line_id = line.get("id")
        item_id = line.get("itemId")
        lines.append(
            {
                "id": line_id if isinstance(line_id, str) and line_id else str(uuid.uuid4()),
                "itemId": item_id if isinstance(item_id, str) and item_id else None,
                "name": name.strip(),
                "type": item_type,
                "unit": str(line.get("unit") or "UN"),
                "quantity": float(quantity),
                "unitPrice": float(unit_price),
                "discountValue": float(discount),
                "totalPrice": float(line_total),
            }
        )
    return lines


class QuoteAdapter(EntityAdapter):
    entity_type = "Quote"
    path = "quotes"
    model = Quote
    fields = (
        SyncField("clientId", "client_id", required=True, nullable=False, max_length=64),
        SyncField("status", "status", nullable=False, choices=QUOTE_STATUSES),
        SyncField("discountValue", "discount_value", kind="decimal", nullable=False),
        SyncField("totalValue", "total_value", kind="decimal", writable=False),
        SyncField("notes", "notes"),
        SyncField("visitScheduledAt", "visit_scheduled_at", kind="datetime"),
    )
    foreign_keys = (("clientId", "Client"),)

    def foreign_refs(self, data: Mapping[str, object]) -> list[ForeignRef]:
        refs = super().foreign_refs(data)
        raw_lines = data.get("items")
        if isinstance(raw_lines, list):
            for idx, obj in enumerate(cast(list[object], raw_lines)):
                if not isinstance(obj, dict):
                    continue
                item_id = cast(dict[str, object], obj).get("itemId")
                if isinstance(item_id, str) and item_id:
                    refs.append(ForeignRef(key=f"items[{idx}].itemId", target="Item", entity_id=item_id))
        return refs

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
        discount = values.get("discount_value")
        if isinstance(discount, Decimal) and discount < 0:
            raise EntityValidationError("invalid discountValue")
        if "items" in data:
            values["items_json"] = normalize_quote_lines(data.get("items") or [])
        elif creating:
            values["items_json"] = []

    def finalize(self, row: TenantRow) -> None:
        quote = cast(Quote, row)
        items_total = sum(
            (Decimal(str(line.get("totalPrice") or 0)) for line in quote.items_json or []),
            Decimal("0"),
        )
        discount = Decimal(str(quote.discount_value or 0))
        quote.total_value = check_money((items_total - discount).quantize(_CENTS), key="totalValue")

    def assigned_clause(self, *, user_id: int, anchor: datetime) -> ColumnElement[bool] | None:
        return col(Quote.client_id).in_(assigned_client_ids(user_id=user_id, anchor=anchor))

    def serialize_extra(self, row: Quote, out: dict[str, object]) -> None:
        out["technicianId"] = row.user_id
        out["items"] = list(row.items_json or [])
