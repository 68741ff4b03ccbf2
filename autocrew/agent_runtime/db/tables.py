"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema. Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


# Apply naming convention to the metadata for deterministic constraint names.
Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UnitOfWork(Base):
    __tablename__ = "units_of_work"
    __table_args__ = (
        Index("ix_units_of_work_owner_id", "owner_id"),
        Index("ix_units_of_work_due", "status", "trigger_mode", "next_run_at"),
    )

    unit_id: Mapped[str] = mapped_column(primary_key=True)
    owner_id: Mapped[str]
    name: Mapped[str]
    trigger_mode: Mapped[str] = mapped_column(server_default="on_demand")
    frequency: Mapped[str | None]
    status: Mapped[str] = mapped_column(server_default="active")
    role: Mapped[str] = mapped_column(Text, server_default="")
    goal: Mapped[str] = mapped_column(Text, server_default="")
    tool_servers: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    config: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    session_token: Mapped[str | None]
    last_run_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    next_run_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class WorkItem(Base):
    __tablename__ = "work_items"
    __table_args__ = (
        Index("ix_work_items_status", "status"),
        Index("ix_work_items_assigned_unit_id", "assigned_unit_id"),
    )

    work_item_id: Mapped[str] = mapped_column(primary_key=True)
    owner_id: Mapped[str]
    title: Mapped[str]
    description: Mapped[str] = mapped_column(Text, server_default="")
    status: Mapped[str] = mapped_column(server_default="pending")
    priority: Mapped[str] = mapped_column(server_default="medium")
    assigned_unit_id: Mapped[str | None] = mapped_column(
        ForeignKey("units_of_work.unit_id", name="fk_work_items_assigned_unit_id"),
    )
    execution_id: Mapped[str | None]
    completion_summary: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Execution(Base):
    __tablename__ = "executions"
    __table_args__ = (
        Index("ix_executions_unit_id", "unit_id"),
        Index("ix_executions_status", "status"),
    )

    execution_id: Mapped[str] = mapped_column(primary_key=True)
    unit_id: Mapped[str] = mapped_column(
        ForeignKey("units_of_work.unit_id", name="fk_executions_unit_id"),
    )
    owner_id: Mapped[str]
    work_item_id: Mapped[str | None] = mapped_column(
        ForeignKey("work_items.work_item_id", name="fk_executions_work_item_id"),
    )
    status: Mapped[str] = mapped_column(server_default="pending")
    trigger_type: Mapped[str]
    started_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    completed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    duration_ms: Mapped[int | None]
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    error: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class ExecutionLog(Base):
    __tablename__ = "execution_logs"
    __table_args__ = (UniqueConstraint("execution_id", "seq", name="uq_execution_logs_execution_id_seq"),)

    log_id: Mapped[str] = mapped_column(primary_key=True)
    execution_id: Mapped[str] = mapped_column(
        ForeignKey("executions.execution_id", name="fk_execution_logs_execution_id"),
    )
    seq: Mapped[int]
    timestamp: Mapped[datetime] = mapped_column(TimestampTZ)
    level: Mapped[str] = mapped_column(server_default="info")
    stage: Mapped[str]
    message: Mapped[str] = mapped_column(Text)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, server_default="{}")
