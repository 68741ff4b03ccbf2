"""PostgreSQL dispatch store.

Each method opens its own short-lived ``AsyncSession`` from the factory
created in the app lifespan.  The tick loops and the per-execution log
writers run outside any HTTP request, so the store cannot rely on a
request-scoped session the way CRUD routers do.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from loguru import logger
from sqlalchemy import case, exists, or_, select, update

from autocrew.agent_runtime.db.tables import Execution as ExecutionRow
from autocrew.agent_runtime.db.tables import ExecutionLog as ExecutionLogRow
from autocrew.agent_runtime.db.tables import UnitOfWork as UnitRow
from autocrew.agent_runtime.db.tables import WorkItem as WorkItemRow
from autocrew.agent_runtime.errors import (
    DuplicateUnitError,
    ExecutionNotFoundError,
    UnitNotFoundError,
    WorkItemNotFoundError,
)
from autocrew.agent_runtime.models.enums import (
    ExecutionStatus,
    Priority,
    TriggerMode,
    UnitStatus,
    WorkItemStatus,
)
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem
from autocrew.agent_runtime.store.memory import ORPHANED_ERROR

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_IN_FLIGHT = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)

_PRIORITY_RANK = case(
    {p.value: p.rank for p in Priority},
    value=WorkItemRow.priority,
    else_=len(Priority) + 1,
)


def _to_columns(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a domain-model dump to ORM column values."""
    if "metadata" in data:
        data["metadata_"] = data.pop("metadata")
    if data.get("cost") is not None:
        data["cost"] = Decimal(str(data["cost"]))
    return data


class SqlDispatchStore:
    """SQLAlchemy implementation of the DispatchStore protocol."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- Units of work ---------------------------------------------------------

    async def create_unit(self, unit: UnitOfWork) -> UnitOfWork:
        async with self._session_factory() as db:
            if await db.get(UnitRow, unit.unit_id) is not None:
                raise DuplicateUnitError(unit.unit_id)
            row = UnitRow(**_to_columns(unit.model_dump()))
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return UnitOfWork.model_validate(row)

    async def get_unit(self, unit_id: str) -> UnitOfWork:
        async with self._session_factory() as db:
            row = await db.get(UnitRow, unit_id)
            if row is None:
                raise UnitNotFoundError(unit_id)
            return UnitOfWork.model_validate(row)

    async def list_units(self, owner_id: str | None = None) -> list[UnitOfWork]:
        stmt = select(UnitRow).order_by(UnitRow.created_at.desc())
        if owner_id is not None:
            stmt = stmt.where(UnitRow.owner_id == owner_id)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [UnitOfWork.model_validate(row) for row in result.scalars().all()]

    async def update_unit(self, unit_id: str, **changes: Any) -> UnitOfWork:
        async with self._session_factory() as db:
            row = await db.get(UnitRow, unit_id)
            if row is None:
                raise UnitNotFoundError(unit_id)
            for key, value in _to_columns(changes).items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return UnitOfWork.model_validate(row)

    async def list_due_units(self, now: datetime) -> list[UnitOfWork]:
        stmt = (
            select(UnitRow)
            .where(
                UnitRow.status == UnitStatus.ACTIVE,
                UnitRow.trigger_mode == TriggerMode.SCHEDULED,
                or_(UnitRow.next_run_at.is_(None), UnitRow.next_run_at <= now),
            )
            .order_by(UnitRow.next_run_at.asc().nulls_first())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [UnitOfWork.model_validate(row) for row in result.scalars().all()]

    async def record_unit_run(self, unit_id: str, *, last_run_at: datetime, next_run_at: datetime | None) -> None:
        await self.update_unit(unit_id, last_run_at=last_run_at, next_run_at=next_run_at)

    async def set_session_token(self, unit_id: str, session_token: str | None) -> None:
        await self.update_unit(unit_id, session_token=session_token)

    # -- Work items ------------------------------------------------------------

    async def create_work_item(self, item: WorkItem) -> WorkItem:
        async with self._session_factory() as db:
            row = WorkItemRow(**item.model_dump())
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return WorkItem.model_validate(row)

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        async with self._session_factory() as db:
            row = await db.get(WorkItemRow, work_item_id)
            if row is None:
                raise WorkItemNotFoundError(work_item_id)
            return WorkItem.model_validate(row)

    async def list_work_items(self, owner_id: str | None = None, status: str | None = None) -> list[WorkItem]:
        stmt = select(WorkItemRow).order_by(WorkItemRow.created_at.desc())
        if owner_id is not None:
            stmt = stmt.where(WorkItemRow.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(WorkItemRow.status == status)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [WorkItem.model_validate(row) for row in result.scalars().all()]

    async def update_work_item(self, work_item_id: str, **changes: Any) -> WorkItem:
        async with self._session_factory() as db:
            row = await db.get(WorkItemRow, work_item_id)
            if row is None:
                raise WorkItemNotFoundError(work_item_id)
            for key, value in changes.items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return WorkItem.model_validate(row)

    async def list_dispatchable_work_items(self) -> list[WorkItem]:
        stmt = (
            select(WorkItemRow)
            .join(UnitRow, UnitRow.unit_id == WorkItemRow.assigned_unit_id)
            .where(
                WorkItemRow.status == WorkItemStatus.APPROVED,
                UnitRow.status == UnitStatus.ACTIVE,
            )
            .order_by(_PRIORITY_RANK, WorkItemRow.created_at.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [WorkItem.model_validate(row) for row in result.scalars().all()]

    # -- Executions ------------------------------------------------------------

    async def create_execution(self, execution: Execution) -> Execution:
        async with self._session_factory() as db:
            row = ExecutionRow(**_to_columns(execution.model_dump()))
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return Execution.model_validate(row)

    async def get_execution(self, execution_id: str) -> Execution:
        async with self._session_factory() as db:
            row = await db.get(ExecutionRow, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            return Execution.model_validate(row)

    async def list_executions(self, unit_id: str | None = None, limit: int = 50) -> list[Execution]:
        stmt = select(ExecutionRow).order_by(ExecutionRow.created_at.desc()).limit(limit)
        if unit_id is not None:
            stmt = stmt.where(ExecutionRow.unit_id == unit_id)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [Execution.model_validate(row) for row in result.scalars().all()]

    async def update_execution(self, execution_id: str, **changes: Any) -> Execution:
        async with self._session_factory() as db:
            row = await db.get(ExecutionRow, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            for key, value in _to_columns(changes).items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return Execution.model_validate(row)

    async def has_running_execution(self, unit_id: str) -> bool:
        stmt = select(
            exists().where(
                ExecutionRow.unit_id == unit_id,
                ExecutionRow.status.in_(_IN_FLIGHT),
            )
        )
        async with self._session_factory() as db:
            return bool(await db.scalar(stmt))

    async def recover_orphaned_executions(self, now: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(ExecutionRow)
                .where(ExecutionRow.status.in_(_IN_FLIGHT))
                .values(status=ExecutionStatus.FAILED, completed_at=now, error=ORPHANED_ERROR)
            )
            items = await db.execute(
                update(WorkItemRow)
                .where(WorkItemRow.status == WorkItemStatus.IN_PROGRESS)
                .values(status=WorkItemStatus.FAILED, completion_summary=ORPHANED_ERROR)
            )
            await db.commit()
        count = result.rowcount  # type: ignore[attr-defined]
        if count > 0 or items.rowcount > 0:  # type: ignore[attr-defined]
            logger.warning(
                "Startup recovery: {} orphaned executions and {} work items marked as failed",
                count,
                items.rowcount,  # type: ignore[attr-defined]
            )
        return count

    # -- Logs ------------------------------------------------------------------

    async def append_logs(self, entries: Sequence[LogEntry]) -> None:
        if not entries:
            return
        async with self._session_factory() as db:
            db.add_all(ExecutionLogRow(**_to_columns(entry.model_dump())) for entry in entries)
            await db.commit()

    async def list_logs(self, execution_id: str, after_seq: int = 0) -> list[LogEntry]:
        stmt = (
            select(ExecutionLogRow)
            .where(ExecutionLogRow.execution_id == execution_id, ExecutionLogRow.seq > after_seq)
            .order_by(ExecutionLogRow.seq.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [LogEntry.model_validate(row) for row in result.scalars().all()]
