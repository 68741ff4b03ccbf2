"""In-process dispatch store.

Used when no database is configured and throughout the unit tests.  Every
method copies on the way in and on the way out so callers can never mutate
stored records behind the store's back.  None of the methods await, which
makes each of them atomic with respect to the event loop.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from autocrew.agent_runtime.errors import (
    DuplicateUnitError,
    ExecutionNotFoundError,
    UnitNotFoundError,
    WorkItemNotFoundError,
)
from autocrew.agent_runtime.models.common import utcnow
from autocrew.agent_runtime.models.enums import (
    ExecutionStatus,
    Priority,
    TriggerMode,
    UnitStatus,
    WorkItemStatus,
)
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem

_M = TypeVar("_M", bound=BaseModel)

_IN_FLIGHT = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
ORPHANED_ERROR = "Interrupted: the runtime restarted while this execution was in flight"


def _apply(model: _M, changes: dict[str, Any]) -> _M:
    """Return a validated copy of *model* with *changes* applied."""
    data = model.model_dump()
    data.update(changes)
    return type(model).model_validate(data)


class MemoryDispatchStore:
    """Dict-backed implementation of the DispatchStore protocol."""

    def __init__(self) -> None:
        self._units: dict[str, UnitOfWork] = {}
        self._items: dict[str, WorkItem] = {}
        self._executions: dict[str, Execution] = {}
        self._logs: dict[str, list[LogEntry]] = {}

    # -- Units of work ---------------------------------------------------------

    async def create_unit(self, unit: UnitOfWork) -> UnitOfWork:
        if unit.unit_id in self._units:
            raise DuplicateUnitError(unit.unit_id)
        self._units[unit.unit_id] = unit.model_copy(deep=True)
        return unit.model_copy(deep=True)

    async def get_unit(self, unit_id: str) -> UnitOfWork:
        unit = self._units.get(unit_id)
        if unit is None:
            raise UnitNotFoundError(unit_id)
        return unit.model_copy(deep=True)

    async def list_units(self, owner_id: str | None = None) -> list[UnitOfWork]:
        units = [u for u in self._units.values() if owner_id is None or u.owner_id == owner_id]
        units.sort(key=lambda u: u.created_at, reverse=True)
        return [u.model_copy(deep=True) for u in units]

    async def update_unit(self, unit_id: str, **changes: Any) -> UnitOfWork:
        unit = self._units.get(unit_id)
        if unit is None:
            raise UnitNotFoundError(unit_id)
        updated = _apply(unit, {**changes, "updated_at": utcnow()})
        self._units[unit_id] = updated
        return updated.model_copy(deep=True)

    async def list_due_units(self, now: datetime) -> list[UnitOfWork]:
        due = [
            u
            for u in self._units.values()
            if u.status == UnitStatus.ACTIVE
            and u.trigger_mode == TriggerMode.SCHEDULED
            and (u.next_run_at is None or u.next_run_at <= now)
        ]
        return [u.model_copy(deep=True) for u in due]

    async def record_unit_run(self, unit_id: str, *, last_run_at: datetime, next_run_at: datetime | None) -> None:
        await self.update_unit(unit_id, last_run_at=last_run_at, next_run_at=next_run_at)

    async def set_session_token(self, unit_id: str, session_token: str | None) -> None:
        await self.update_unit(unit_id, session_token=session_token)

    # -- Work items ------------------------------------------------------------

    async def create_work_item(self, item: WorkItem) -> WorkItem:
        self._items[item.work_item_id] = item.model_copy(deep=True)
        return item.model_copy(deep=True)

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        item = self._items.get(work_item_id)
        if item is None:
            raise WorkItemNotFoundError(work_item_id)
        return item.model_copy(deep=True)

    async def list_work_items(self, owner_id: str | None = None, status: str | None = None) -> list[WorkItem]:
        items = [
            i
            for i in self._items.values()
            if (owner_id is None or i.owner_id == owner_id) and (status is None or i.status == status)
        ]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in items]

    async def update_work_item(self, work_item_id: str, **changes: Any) -> WorkItem:
        item = self._items.get(work_item_id)
        if item is None:
            raise WorkItemNotFoundError(work_item_id)
        updated = _apply(item, {**changes, "updated_at": utcnow()})
        self._items[work_item_id] = updated
        return updated.model_copy(deep=True)

    async def list_dispatchable_work_items(self) -> list[WorkItem]:
        items = []
        for item in self._items.values():
            if item.status != WorkItemStatus.APPROVED or item.assigned_unit_id is None:
                continue
            unit = self._units.get(item.assigned_unit_id)
            if unit is None or unit.status != UnitStatus.ACTIVE:
                continue
            items.append(item)
        items.sort(key=lambda i: (Priority(i.priority).rank, i.created_at))
        return [i.model_copy(deep=True) for i in items]

    # -- Executions ------------------------------------------------------------

    async def create_execution(self, execution: Execution) -> Execution:
        self._executions[execution.execution_id] = execution.model_copy(deep=True)
        self._logs.setdefault(execution.execution_id, [])
        return execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Execution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution.model_copy(deep=True)

    async def list_executions(self, unit_id: str | None = None, limit: int = 50) -> list[Execution]:
        executions = [e for e in self._executions.values() if unit_id is None or e.unit_id == unit_id]
        executions.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in executions[:limit]]

    async def update_execution(self, execution_id: str, **changes: Any) -> Execution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        updated = _apply(execution, changes)
        self._executions[execution_id] = updated
        return updated.model_copy(deep=True)

    async def has_running_execution(self, unit_id: str) -> bool:
        return any(e.unit_id == unit_id and e.status in _IN_FLIGHT for e in self._executions.values())

    async def recover_orphaned_executions(self, now: datetime) -> int:
        orphaned = [e for e in self._executions.values() if e.status in _IN_FLIGHT]
        for execution in orphaned:
            self._executions[execution.execution_id] = _apply(
                execution,
                {"status": ExecutionStatus.FAILED, "completed_at": now, "error": ORPHANED_ERROR},
            )
        for item in list(self._items.values()):
            if item.status == WorkItemStatus.IN_PROGRESS:
                self._items[item.work_item_id] = _apply(
                    item,
                    {"status": WorkItemStatus.FAILED, "completion_summary": ORPHANED_ERROR, "updated_at": now},
                )
        return len(orphaned)

    # -- Logs ------------------------------------------------------------------

    async def append_logs(self, entries: Sequence[LogEntry]) -> None:
        for entry in entries:
            if entry.execution_id not in self._executions:
                raise ExecutionNotFoundError(entry.execution_id)
            self._logs.setdefault(entry.execution_id, []).append(entry.model_copy(deep=True))

    async def list_logs(self, execution_id: str, after_seq: int = 0) -> list[LogEntry]:
        entries = [e for e in self._logs.get(execution_id, []) if e.seq > after_seq]
        entries.sort(key=lambda e: e.seq)
        return [e.model_copy(deep=True) for e in entries]
