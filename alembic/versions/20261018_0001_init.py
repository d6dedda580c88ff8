"""init schema (users + rate limits + mutation ledger)

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("api_token", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("api_token", name="uq_users_api_token"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
    op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    op.create_table(
        "rate_limit_counters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("scope", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("window_start_ms", sa.BigInteger(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "scope",
            "key",
            "window_start_ms",
            name="uq_rate_limit_counters_scope_key_window",
        ),
    )
    op.create_index("ix_rate_limit_counters_scope", "rate_limit_counters", ["scope"], unique=False)
    op.create_index("ix_rate_limit_counters_key", "rate_limit_counters", ["key"], unique=False)
    op.create_index(
        "ix_rate_limit_counters_window_start_ms",
        "rate_limit_counters",
        ["window_start_ms"],
        unique=False,
    )

    op.create_table(
        "processed_mutations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("mutation_id", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("op", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("server_entity_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id", "mutation_id", name="uq_processed_mutations_user_id_mutation_id"
        ),
    )
    op.create_index(
        "ix_processed_mutations_user_id", "processed_mutations", ["user_id"], unique=False
    )
    op.create_index(
        "ix_processed_mutations_mutation_id", "processed_mutations", ["mutation_id"], unique=False
    )
    op.create_index(
        "ix_processed_mutations_entity_type", "processed_mutations", ["entity_type"], unique=False
    )
    # Retention pruning scans by age.
    op.create_index(
        "ix_processed_mutations_created_at", "processed_mutations", ["created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_table("processed_mutations")
    op.drop_table("rate_limit_counters")
    op.drop_table("users")
