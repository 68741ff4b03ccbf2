"""initial dispatch index

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "units_of_work",
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("trigger_mode", sa.String(), server_default="on_demand", nullable=False),
        sa.Column("frequency", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default="active", nullable=False),
        sa.Column("role", sa.Text(), server_default="", nullable=False),
        sa.Column("goal", sa.Text(), server_default="", nullable=False),
        sa.Column("tool_servers", postgresql.JSONB(astext_type=sa.Text()), server_default="[]", nullable=False),
        sa.Column("config", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("session_token", sa.String(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("unit_id", name=op.f("pk_units_of_work")),
    )
    op.create_index("ix_units_of_work_owner_id", "units_of_work", ["owner_id"])
    op.create_index("ix_units_of_work_due", "units_of_work", ["status", "trigger_mode", "next_run_at"])

    op.create_table(
        "work_items",
        sa.Column("work_item_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("priority", sa.String(), server_default="medium", nullable=False),
        sa.Column("assigned_unit_id", sa.String(), nullable=True),
        sa.Column("execution_id", sa.String(), nullable=True),
        sa.Column("completion_summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["assigned_unit_id"],
            ["units_of_work.unit_id"],
            name="fk_work_items_assigned_unit_id",
        ),
        sa.PrimaryKeyConstraint("work_item_id", name=op.f("pk_work_items")),
    )
    op.create_index("ix_work_items_status", "work_items", ["status"])
    op.create_index("ix_work_items_assigned_unit_id", "work_items", ["assigned_unit_id"])

    op.create_table(
        "executions",
        sa.Column("execution_id", sa.String(), nullable=False),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("work_item_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("trigger_type", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("cost", sa.Numeric(12, 6), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["unit_id"], ["units_of_work.unit_id"], name="fk_executions_unit_id"),
        sa.ForeignKeyConstraint(["work_item_id"], ["work_items.work_item_id"], name="fk_executions_work_item_id"),
        sa.PrimaryKeyConstraint("execution_id", name=op.f("pk_executions")),
    )
    op.create_index("ix_executions_unit_id", "executions", ["unit_id"])
    op.create_index("ix_executions_status", "executions", ["status"])

    op.create_table(
        "execution_logs",
        sa.Column("log_id", sa.String(), nullable=False),
        sa.Column("execution_id", sa.String(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("level", sa.String(), server_default="info", nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.ForeignKeyConstraint(
            ["execution_id"],
            ["executions.execution_id"],
            name="fk_execution_logs_execution_id",
        ),
        sa.PrimaryKeyConstraint("log_id", name=op.f("pk_execution_logs")),
        sa.UniqueConstraint("execution_id", "seq", name="uq_execution_logs_execution_id_seq"),
    )


def downgrade() -> None:
    op.drop_table("execution_logs")
    op.drop_index("ix_executions_status", table_name="executions")
    op.drop_index("ix_executions_unit_id", table_name="executions")
    op.drop_table("executions")
    op.drop_index("ix_work_items_assigned_unit_id", table_name="work_items")
    op.drop_index("ix_work_items_status", table_name="work_items")
    op.drop_table("work_items")
    op.drop_index("ix_units_of_work_due", table_name="units_of_work")
    op.drop_index("ix_units_of_work_owner_id", table_name="units_of_work")
    op.drop_table("units_of_work")
