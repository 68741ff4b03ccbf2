"""Store interfaces.

Two kinds of persistence back the runtime:

- **DispatchStore**: the relational index (units of work, work items,
  executions, log entries).  ``SqlDispatchStore`` talks to PostgreSQL;
  ``MemoryDispatchStore`` keeps everything in-process for development and
  tests.
- **StateStore**: large provider session blobs (message history) keyed by
  session token.  ``LocalStateStore`` writes them to the filesystem.

All methods return domain models (``models/``), never ORM rows, so callers
are independent of the backend.  Lookups of a missing record raise the
matching ``*NotFoundError`` from ``errors.py``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.session import SessionState
from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem


@runtime_checkable
class DispatchStore(Protocol):
    """Async protocol for the relational dispatch index."""

    # -- Units of work ---------------------------------------------------------

    async def create_unit(self, unit: UnitOfWork) -> UnitOfWork:
        """Insert a unit.  Raises ``DuplicateUnitError`` if the ID exists."""
        ...

    async def get_unit(self, unit_id: str) -> UnitOfWork: ...

    async def list_units(self, owner_id: str | None = None) -> list[UnitOfWork]:
        """List units, newest first."""
        ...

    async def update_unit(self, unit_id: str, **changes: Any) -> UnitOfWork: ...

    async def list_due_units(self, now: datetime) -> list[UnitOfWork]:
        """Active scheduled units whose ``next_run_at`` is unset or not after *now*."""
        ...

    async def record_unit_run(self, unit_id: str, *, last_run_at: datetime, next_run_at: datetime | None) -> None: ...

    async def set_session_token(self, unit_id: str, session_token: str | None) -> None: ...

    # -- Work items ------------------------------------------------------------

    async def create_work_item(self, item: WorkItem) -> WorkItem: ...

    async def get_work_item(self, work_item_id: str) -> WorkItem: ...

    async def list_work_items(self, owner_id: str | None = None, status: str | None = None) -> list[WorkItem]: ...

    async def update_work_item(self, work_item_id: str, **changes: Any) -> WorkItem: ...

    async def list_dispatchable_work_items(self) -> list[WorkItem]:
        """Approved items assigned to an active unit.

        Ordered by priority rank (critical first), then ``created_at``
        ascending.
        """
        ...

    # -- Executions ------------------------------------------------------------

    async def create_execution(self, execution: Execution) -> Execution: ...

    async def get_execution(self, execution_id: str) -> Execution: ...

    async def list_executions(self, unit_id: str | None = None, limit: int = 50) -> list[Execution]:
        """List executions, newest first."""
        ...

    async def update_execution(self, execution_id: str, **changes: Any) -> Execution: ...

    async def has_running_execution(self, unit_id: str) -> bool:
        """True if the unit has a ``pending`` or ``running`` execution."""
        ...

    async def recover_orphaned_executions(self, now: datetime) -> int:
        """Fail executions and work items left in flight by a dead process.

        Returns the number of executions recovered.
        """
        ...

    # -- Logs ------------------------------------------------------------------

    async def append_logs(self, entries: Sequence[LogEntry]) -> None: ...

    async def list_logs(self, execution_id: str, after_seq: int = 0) -> list[LogEntry]:
        """Logs with ``seq > after_seq`` in emission order."""
        ...


@runtime_checkable
class StateStore(Protocol):
    """Async protocol for reading and writing provider session blobs.

    Storage layout (keyed by session token):
        {root}/sessions/{session_token}/state.json
    """

    async def write_state(self, session_token: str, state: SessionState) -> None: ...

    async def read_state(self, session_token: str) -> SessionState:
        """Read session state.  Raises ``FileNotFoundError`` if not found."""
        ...

    async def exists(self, session_token: str) -> bool: ...

    async def delete(self, session_token: str) -> None:
        """Delete all stored data for a session.  No-op if not found."""
        ...
