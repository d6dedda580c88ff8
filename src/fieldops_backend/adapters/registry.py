from __future__ import annotations

from fieldops_backend.adapters.base import EntityAdapter, EntityType
from fieldops_backend.adapters.catalog import CategoryAdapter, ItemAdapter
from fieldops_backend.adapters.clients import ClientAdapter
from fieldops_backend.adapters.invoices import InvoiceAdapter
from fieldops_backend.adapters.quotes import QuoteAdapter
from fieldops_backend.adapters.work_orders import WorkOrderAdapter

_ADAPTERS: tuple[EntityAdapter, ...] = (
    ClientAdapter(),
    QuoteAdapter(),
    WorkOrderAdapter(),
    InvoiceAdapter(),
    ItemAdapter(),
    CategoryAdapter(),
)

ADAPTERS_BY_TYPE: dict[str, EntityAdapter] = {a.entity_type: a for a in _ADAPTERS}
ADAPTERS_BY_PATH: dict[str, EntityAdapter] = {a.path: a for a in _ADAPTERS}


def all_adapters() -> tuple[EntityAdapter, ...]:
    return _ADAPTERS


def get_adapter(entity_type: EntityType | str) -> EntityAdapter | None:
    return ADAPTERS_BY_TYPE.get(entity_type)


def get_adapter_for_path(path: str) -> EntityAdapter | None:
    return ADAPTERS_BY_PATH.get(path)
