"""synchronized entity tables (clients, catalog, quotes, work orders, invoices)

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:00:01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def _tenant_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_mutation_id", sa.String(length=64), nullable=True),
    ]


def _money(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=True)
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default=sa.text("0"))


def _tenant_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_user_id", table, ["user_id"], unique=False)
    op.create_index(f"ix_{table}_created_at", table, ["created_at"], unique=False)
    op.create_index(f"ix_{table}_updated_at", table, ["updated_at"], unique=False)
    op.create_index(f"ix_{table}_deleted_at", table, ["deleted_at"], unique=False)
    # Keyset pagination: WHERE user_id = ? ORDER BY updated_at, id
    op.create_index(
        f"ix_{table}_user_id_updated_at_id", table, ["user_id", "updated_at", "id"], unique=False
    )


def upgrade() -> None:
    op.create_table(
        "clients",
        *_tenant_columns(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=64), nullable=True),
        sa.Column("zip_code", sa.String(length=32), nullable=True),
        sa.Column("tax_id", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    _tenant_indexes("clients")

    op.create_table(
        "categories",
        *_tenant_columns(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    _tenant_indexes("categories")
    op.create_index("ix_categories_is_active", "categories", ["is_active"], unique=False)

    op.create_table(
        "items",
        *_tenant_columns(),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="PRODUCT"),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="UN"),
        _money("base_price"),
        _money("cost_price", nullable=True),
        sa.Column("default_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    _tenant_indexes("items")
    op.create_index("ix_items_category_id", "items", ["category_id"], unique=False)
    op.create_index("ix_items_is_active", "items", ["is_active"], unique=False)

    op.create_table(
        "quotes",
        *_tenant_columns(),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        _money("discount_value"),
        _money("total_value"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("visit_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("items_json", sa.JSON(), nullable=True),
    )
    _tenant_indexes("quotes")
    op.create_index("ix_quotes_client_id", "quotes", ["client_id"], unique=False)
    op.create_index("ix_quotes_status", "quotes", ["status"], unique=False)

    op.create_table(
        "work_orders",
        *_tenant_columns(),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("quote_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="SCHEDULED"),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _money("total_value", nullable=True),
    )
    _tenant_indexes("work_orders")
    op.create_index("ix_work_orders_client_id", "work_orders", ["client_id"], unique=False)
    op.create_index("ix_work_orders_quote_id", "work_orders", ["quote_id"], unique=False)
    op.create_index("ix_work_orders_status", "work_orders", ["status"], unique=False)
    op.create_index(
        "ix_work_orders_scheduled_date", "work_orders", ["scheduled_date"], unique=False
    )

    op.create_table(
        "invoices",
        *_tenant_columns(),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("work_order_id", sa.String(length=64), nullable=True),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        _money("subtotal"),
        _money("tax"),
        _money("discount"),
        _money("total"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "user_id", "invoice_number", name="uq_invoices_user_id_invoice_number"
        ),
    )
    _tenant_indexes("invoices")
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"], unique=False)
    op.create_index("ix_invoices_work_order_id", "invoices", ["work_order_id"], unique=False)
    op.create_index("ix_invoices_status", "invoices", ["status"], unique=False)


def downgrade() -> None:
    for table in ("invoices", "work_orders", "quotes", "items", "categories", "clients"):
        op.drop_table(table)
