from __future__ import annotations

from decimal import Decimal
from typing import Mapping

from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import EntityAdapter, EntityValidationError, SyncField
from fieldops_backend.models import Category, Item, TenantRow

ITEM_TYPES = frozenset({"PRODUCT", "SERVICE"})


class CategoryAdapter(EntityAdapter):
    entity_type = "Category"
    path = "categories"
    model = Category
    fields = (
        SyncField("name", "name", required=True, nullable=False, max_length=200),
        SyncField("description", "description"),
        SyncField("color", "color", max_length=32),
        SyncField("isActive", "is_active", kind="bool", nullable=False),
    )


class ItemAdapter(EntityAdapter):
    entity_type = "Item"
    path = "items"
    model = Item
    fields = (
        SyncField("categoryId", "category_id", max_length=64),
        SyncField("name", "name", required=True, nullable=False, max_length=200),
        SyncField("description", "description"),
        SyncField("type", "type", nullable=False, choices=ITEM_TYPES),
        SyncField("sku", "sku", max_length=64),
        SyncField("unit", "unit", nullable=False, max_length=16),
        SyncField("basePrice", "base_price", kind="decimal", required=True, nullable=False),
        SyncField("costPrice", "cost_price", kind="decimal"),
        SyncField("defaultDurationMinutes", "default_duration_minutes", kind="int"),
        SyncField("isActive", "is_active", kind="bool", nullable=False),
    )
    foreign_keys = (("categoryId", "Category"),)

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
        for attr, key in (("base_price", "basePrice"), ("cost_price", "costPrice")):
            price = values.get(attr)
            if isinstance(price, Decimal) and price < 0:
                raise EntityValidationError(f"invalid {key}")
