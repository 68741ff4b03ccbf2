"""SqlDispatchStore against a real PostgreSQL (testcontainers).

Run with ``pytest -m integration``.  Each test runs inside a transaction that
is rolled back at teardown.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from autocrew.agent_runtime.errors import DuplicateUnitError, ExecutionNotFoundError, UnitNotFoundError
from autocrew.agent_runtime.execution.coordinator import ExecutionCoordinator
from autocrew.agent_runtime.models.enums import (
    ExecutionStatus,
    Priority,
    TriggerMode,
    TriggerType,
    UnitStatus,
    WorkItemStatus,
)
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.unit import WorkItem
from autocrew.agent_runtime.providers.echo import EchoProvider
from autocrew.agent_runtime.registry import ActorRegistry
from autocrew.agent_runtime.store.memory import ORPHANED_ERROR
from autocrew.agent_runtime.store.sql import SqlDispatchStore
from autocrew.agent_runtime.streaming.multiplexer import LogStreamMultiplexer

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def sql_store(session_factory) -> SqlDispatchStore:
    return SqlDispatchStore(session_factory)


async def test_unit_round_trip(sql_store: SqlDispatchStore, make_unit) -> None:
    unit = await sql_store.create_unit(make_unit(tool_servers=["github"], config={"max_turns": 4}))
    with pytest.raises(DuplicateUnitError):
        await sql_store.create_unit(unit)

    fetched = await sql_store.get_unit(unit.unit_id)
    assert fetched.tool_servers == ["github"]
    assert fetched.max_turns == 4
    assert fetched.status == UnitStatus.ACTIVE

    updated = await sql_store.update_unit(unit.unit_id, goal="Ship it.", status=UnitStatus.PAUSED)
    assert updated.goal == "Ship it."
    assert updated.status == UnitStatus.PAUSED

    with pytest.raises(UnitNotFoundError):
        await sql_store.get_unit("missing")


async def test_due_units_and_record_run(sql_store: SqlDispatchStore, make_unit) -> None:
    due = await sql_store.create_unit(make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="hourly"))
    await sql_store.create_unit(
        make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="hourly", next_run_at=NOW + timedelta(hours=1))
    )
    await sql_store.create_unit(make_unit())

    assert [u.unit_id for u in await sql_store.list_due_units(NOW)] == [due.unit_id]

    await sql_store.record_unit_run(due.unit_id, last_run_at=NOW, next_run_at=NOW + timedelta(hours=1))
    assert await sql_store.list_due_units(NOW) == []
    assert (await sql_store.get_unit(due.unit_id)).last_run_at == NOW


async def test_dispatchable_priority_order(sql_store: SqlDispatchStore, make_unit) -> None:
    active = await sql_store.create_unit(make_unit())
    disabled = await sql_store.create_unit(make_unit(status=UnitStatus.DISABLED))

    for offset, priority in enumerate([Priority.LOW, Priority.CRITICAL, Priority.MEDIUM, Priority.HIGH]):
        await sql_store.create_work_item(
            WorkItem(
                owner_id="owner-1",
                title=str(priority),
                priority=priority,
                status=WorkItemStatus.APPROVED,
                assigned_unit_id=active.unit_id,
                created_at=NOW + timedelta(seconds=offset),
            )
        )
    await sql_store.create_work_item(
        WorkItem(
            owner_id="owner-1",
            title="on-disabled-unit",
            priority=Priority.CRITICAL,
            status=WorkItemStatus.APPROVED,
            assigned_unit_id=disabled.unit_id,
        )
    )

    titles = [i.title for i in await sql_store.list_dispatchable_work_items()]
    assert titles == ["critical", "high", "medium", "low"]


async def test_executions_logs_and_recovery(sql_store: SqlDispatchStore, make_unit) -> None:
    unit = await sql_store.create_unit(make_unit())
    execution = await sql_store.create_execution(
        Execution(unit_id=unit.unit_id, owner_id=unit.owner_id, status=ExecutionStatus.RUNNING, trigger_type="manual")
    )
    assert await sql_store.has_running_execution(unit.unit_id)

    await sql_store.append_logs(
        [
            LogEntry(execution_id=execution.execution_id, seq=seq, stage="thinking", message=str(seq))
            for seq in (1, 2, 3)
        ]
    )
    assert [e.seq for e in await sql_store.list_logs(execution.execution_id, after_seq=1)] == [2, 3]

    assert await sql_store.recover_orphaned_executions(NOW) == 1
    recovered = await sql_store.get_execution(execution.execution_id)
    assert recovered.status == ExecutionStatus.FAILED
    assert recovered.error == ORPHANED_ERROR
    assert not await sql_store.has_running_execution(unit.unit_id)

    with pytest.raises(ExecutionNotFoundError):
        await sql_store.get_execution("missing")


async def test_cost_null_and_zero_distinct(sql_store: SqlDispatchStore, make_unit) -> None:
    unit = await sql_store.create_unit(make_unit())
    unknown = await sql_store.create_execution(
        Execution(unit_id=unit.unit_id, owner_id=unit.owner_id, trigger_type=TriggerType.MANUAL)
    )
    free = await sql_store.create_execution(
        Execution(unit_id=unit.unit_id, owner_id=unit.owner_id, trigger_type=TriggerType.MANUAL)
    )
    await sql_store.update_execution(unknown.execution_id, status=ExecutionStatus.COMPLETED, cost=None)
    await sql_store.update_execution(free.execution_id, status=ExecutionStatus.COMPLETED, cost=0.0)

    assert (await sql_store.get_execution(unknown.execution_id)).cost is None
    assert (await sql_store.get_execution(free.execution_id)).cost == 0.0


async def test_full_run_persists(sql_store: SqlDispatchStore, make_unit) -> None:
    unit = await sql_store.create_unit(make_unit())
    coordinator = ExecutionCoordinator(sql_store, ActorRegistry(), LogStreamMultiplexer(), EchoProvider())

    result = await coordinator.run(unit, TriggerType.MANUAL)

    assert result.status == ExecutionStatus.COMPLETED
    execution = await sql_store.get_execution(result.execution_id)
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.metadata["model"] == "echo"
    logs = await sql_store.list_logs(result.execution_id)
    assert [e.seq for e in logs] == list(range(1, len(logs) + 1))
    assert (await sql_store.get_unit(unit.unit_id)).session_token == result.session_token
