# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Index, Text, UniqueConstraint
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _ts_field(*, index: bool = True) -> Any:
    return Field(default_factory=utc_now, sa_type=DateTime(timezone=True), index=index)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    # Issued by the auth/session layer; sync endpoints only verify it.
    api_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True, unique=True))

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = _ts_field()


class RateLimitCounter(SQLModel, table=True):
    __tablename__ = "rate_limit_counters"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint(
            "scope",
            "key",
            "window_start_ms",
            name="uq_rate_limit_counters_scope_key_window",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # Scope indicates which endpoint the limiter applies to.
    scope: str = Field(index=True, max_length=64)
    # Key is the subject we rate-limit on (e.g., user:42).
    key: str = Field(index=True, max_length=128)
    window_start_ms: int = Field(index=True)
    count: int = Field(default=0)

    created_at: datetime = _ts_field()
    updated_at: datetime = _ts_field()


class TenantRow(SQLModel):
    """Columns shared by every synchronized entity table."""

    id: str = Field(primary_key=True, min_length=1, max_length=64)
    user_id: int = Field(index=True, foreign_key="users.id")

    created_at: datetime = _ts_field()
    # Server clock only; strictly increases on every accepted write.
    updated_at: datetime = _ts_field()
    deleted_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), index=True, nullable=True
    )
    # Mutation that produced the current state; lets a retried write be detected
    # even if its ledger entry never got persisted.
    last_mutation_id: Optional[str] = Field(default=None, max_length=64)


def _keyset_index(table: str) -> Index:
    return Index(f"ix_{table}_user_id_updated_at_id", "user_id", "updated_at", "id")


class Client(TenantRow, table=True):
    __tablename__ = "clients"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (_keyset_index("clients"),)

    name: str = Field(min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=120)
    state: Optional[str] = Field(default=None, max_length=64)
    zip_code: Optional[str] = Field(default=None, max_length=32)
    tax_id: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))


class Category(TenantRow, table=True):
    __tablename__ = "categories"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (_keyset_index("categories"),)

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    color: Optional[str] = Field(default=None, max_length=32)
    is_active: bool = Field(default=True, index=True)


class Item(TenantRow, table=True):
    __tablename__ = "items"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (_keyset_index("items"),)

    category_id: Optional[str] = Field(default=None, index=True, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    type: str = Field(default="PRODUCT", max_length=20)
    sku: Optional[str] = Field(default=None, max_length=64)
    unit: str = Field(default="UN", max_length=16)
    base_price: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    cost_price: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    default_duration_minutes: Optional[int] = Field(default=None)
    is_active: bool = Field(default=True, index=True)


class Quote(TenantRow, table=True):
    __tablename__ = "quotes"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (_keyset_index("quotes"),)

    client_id: str = Field(index=True, max_length=64)
    status: str = Field(default="DRAFT", index=True, max_length=20)
    discount_value: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_value: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    visit_scheduled_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    # Line items travel with the quote as one record.
    items_json: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(SAJSON))


class WorkOrder(TenantRow, table=True):
    __tablename__ = "work_orders"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (_keyset_index("work_orders"),)

    client_id: str = Field(index=True, max_length=64)
    quote_id: Optional[str] = Field(default=None, index=True, max_length=64)
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(default="SCHEDULED", index=True, max_length=20)
    scheduled_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), index=True, nullable=True
    )
    scheduled_start_time: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    scheduled_end_time: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    execution_start: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    execution_end: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    address: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    total_value: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)


class Invoice(TenantRow, table=True):
    __tablename__ = "invoices"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        _keyset_index("invoices"),
        UniqueConstraint("user_id", "invoice_number", name="uq_invoices_user_id_invoice_number"),
    )

    client_id: str = Field(index=True, max_length=64)
    work_order_id: Optional[str] = Field(default=None, index=True, max_length=64)
    invoice_number: str = Field(max_length=32)
    status: str = Field(default="PENDING", index=True, max_length=20)
    subtotal: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    due_date: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    paid_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), nullable=True
    )
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))


class ProcessedMutation(SQLModel, table=True):
    """Idempotency ledger: one terminal outcome per (tenant, mutationId)."""

    __tablename__ = "processed_mutations"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("user_id", "mutation_id", name="uq_processed_mutations_user_id_mutation_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    mutation_id: str = Field(index=True, min_length=1, max_length=64)

    entity_type: str = Field(index=True, max_length=32)
    entity_id: str = Field(max_length=64)
    op: str = Field(max_length=16)

    status: str = Field(max_length=16)
    reason: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    server_entity_json: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column(SAJSON, nullable=True)
    )

    created_at: datetime = _ts_field()
