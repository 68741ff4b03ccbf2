"""Unit tests for LocalStateStore and MemoryDispatchStore.

No database or Docker required.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

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
    TriggerType,
    UnitStatus,
    WorkItemStatus,
)
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.session import SessionState
from autocrew.agent_runtime.models.unit import WorkItem
from autocrew.agent_runtime.store.local import LocalStateStore
from autocrew.agent_runtime.store.memory import ORPHANED_ERROR, MemoryDispatchStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# LocalStateStore
# ---------------------------------------------------------------------------


@pytest.fixture
def state_store(tmp_path) -> LocalStateStore:
    return LocalStateStore(tmp_path)


async def test_write_and_read_state(state_store: LocalStateStore, tmp_path) -> None:
    state = SessionState(message_history=[{"kind": "request", "parts": []}], model="openai:gpt-4o")
    await state_store.write_state("sess-1", state)

    result = await state_store.read_state("sess-1")
    assert result.message_history == [{"kind": "request", "parts": []}]
    assert result.model == "openai:gpt-4o"
    assert (tmp_path / "sessions" / "sess-1" / "state.json").exists()


async def test_read_state_not_found(state_store: LocalStateStore) -> None:
    with pytest.raises(FileNotFoundError):
        await state_store.read_state("nonexistent")


async def test_exists_and_delete(state_store: LocalStateStore) -> None:
    assert not await state_store.exists("sess-1")
    await state_store.write_state("sess-1", SessionState())
    assert await state_store.exists("sess-1")

    await state_store.delete("sess-1")
    assert not await state_store.exists("sess-1")
    # Deleting twice is fine.
    await state_store.delete("sess-1")


async def test_overwrite_leaves_no_temp_files(state_store: LocalStateStore, tmp_path) -> None:
    await state_store.write_state("sess-1", SessionState(model="a"))
    await state_store.write_state("sess-1", SessionState(model="b"))

    assert (await state_store.read_state("sess-1")).model == "b"
    assert [p.name for p in (tmp_path / "sessions" / "sess-1").iterdir()] == ["state.json"]


@pytest.mark.parametrize("token", ["", "../escape", ".hidden", "a/b"])
async def test_invalid_session_token(state_store: LocalStateStore, token: str) -> None:
    with pytest.raises(ValueError, match="Invalid session token"):
        await state_store.write_state(token, SessionState())


# ---------------------------------------------------------------------------
# MemoryDispatchStore: units
# ---------------------------------------------------------------------------


async def test_unit_crud(store: MemoryDispatchStore, make_unit) -> None:
    unit = await store.create_unit(make_unit())
    with pytest.raises(DuplicateUnitError):
        await store.create_unit(unit)

    assert (await store.get_unit(unit.unit_id)).name == "Release Manager"
    updated = await store.update_unit(unit.unit_id, goal="Ship it.")
    assert updated.goal == "Ship it."
    assert updated.updated_at >= unit.updated_at

    with pytest.raises(UnitNotFoundError):
        await store.get_unit("missing")
    with pytest.raises(UnitNotFoundError):
        await store.update_unit("missing", goal="x")


async def test_list_units_by_owner(store: MemoryDispatchStore, make_unit) -> None:
    await store.create_unit(make_unit(owner_id="alice"))
    await store.create_unit(make_unit(owner_id="bob"))

    assert [u.owner_id for u in await store.list_units("alice")] == ["alice"]
    assert len(await store.list_units()) == 2


async def test_returned_models_are_copies(store: MemoryDispatchStore, make_unit) -> None:
    unit = await store.create_unit(make_unit(tool_servers=["github"]))
    fetched = await store.get_unit(unit.unit_id)
    fetched.tool_servers.append("fs")

    assert (await store.get_unit(unit.unit_id)).tool_servers == ["github"]


async def test_list_due_units(store: MemoryDispatchStore, make_unit) -> None:
    never_run = await store.create_unit(make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="daily"))
    overdue = await store.create_unit(
        make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="daily", next_run_at=NOW - timedelta(hours=1))
    )
    exactly_now = await store.create_unit(
        make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="daily", next_run_at=NOW)
    )
    await store.create_unit(
        make_unit(trigger_mode=TriggerMode.SCHEDULED, frequency="daily", next_run_at=NOW + timedelta(hours=1))
    )
    await store.create_unit(make_unit(trigger_mode=TriggerMode.SCHEDULED, status=UnitStatus.PAUSED))
    await store.create_unit(make_unit(trigger_mode=TriggerMode.ON_DEMAND))

    due = {u.unit_id for u in await store.list_due_units(NOW)}
    assert due == {never_run.unit_id, overdue.unit_id, exactly_now.unit_id}


async def test_record_run_and_session_token(store: MemoryDispatchStore, make_unit) -> None:
    unit = await store.create_unit(make_unit())
    await store.record_unit_run(unit.unit_id, last_run_at=NOW, next_run_at=NOW + timedelta(hours=1))
    await store.set_session_token(unit.unit_id, "tok-1")

    stored = await store.get_unit(unit.unit_id)
    assert stored.last_run_at == NOW
    assert stored.next_run_at == NOW + timedelta(hours=1)
    assert stored.session_token == "tok-1"


# ---------------------------------------------------------------------------
# MemoryDispatchStore: work items
# ---------------------------------------------------------------------------


async def test_work_item_crud(store: MemoryDispatchStore) -> None:
    item = await store.create_work_item(WorkItem(owner_id="owner-1", title="Triage"))
    assert item.status == WorkItemStatus.PENDING
    assert item.priority == Priority.MEDIUM

    updated = await store.update_work_item(item.work_item_id, status=WorkItemStatus.APPROVED)
    assert updated.status == WorkItemStatus.APPROVED
    assert [i.work_item_id for i in await store.list_work_items(status="approved")] == [item.work_item_id]
    assert await store.list_work_items(owner_id="someone-else") == []

    with pytest.raises(WorkItemNotFoundError):
        await store.get_work_item("missing")


async def test_dispatchable_ordering_and_filtering(store: MemoryDispatchStore, make_unit) -> None:
    active = await store.create_unit(make_unit())
    disabled = await store.create_unit(make_unit(status=UnitStatus.DISABLED))
    base = NOW

    def item(priority: Priority, offset: int, **overrides) -> WorkItem:
        fields = {
            "owner_id": "owner-1",
            "title": f"{priority}-{offset}",
            "status": WorkItemStatus.APPROVED,
            "priority": priority,
            "assigned_unit_id": active.unit_id,
            "created_at": base + timedelta(seconds=offset),
        }
        fields.update(overrides)
        return WorkItem(**fields)

    for work_item in [
        item(Priority.LOW, 0),
        item(Priority.HIGH, 1),
        item(Priority.CRITICAL, 2),
        item(Priority.HIGH, 3),
        item(Priority.CRITICAL, 4, assigned_unit_id=disabled.unit_id),
        item(Priority.CRITICAL, 5, assigned_unit_id=None),
        item(Priority.CRITICAL, 6, status=WorkItemStatus.PENDING),
    ]:
        await store.create_work_item(work_item)

    titles = [i.title for i in await store.list_dispatchable_work_items()]
    assert titles == ["critical-2", "high-1", "high-3", "low-0"]


# ---------------------------------------------------------------------------
# MemoryDispatchStore: executions and logs
# ---------------------------------------------------------------------------


def _execution(status: ExecutionStatus = ExecutionStatus.PENDING, unit_id: str = "unit-1") -> Execution:
    return Execution(unit_id=unit_id, owner_id="owner-1", status=status, trigger_type=TriggerType.MANUAL)


async def test_has_running_execution(store: MemoryDispatchStore) -> None:
    assert not await store.has_running_execution("unit-1")
    execution = await store.create_execution(_execution(ExecutionStatus.PENDING))
    assert await store.has_running_execution("unit-1")
    assert not await store.has_running_execution("unit-2")

    await store.update_execution(execution.execution_id, status=ExecutionStatus.COMPLETED)
    assert not await store.has_running_execution("unit-1")


async def test_recover_orphaned_executions(store: MemoryDispatchStore) -> None:
    running = await store.create_execution(_execution(ExecutionStatus.RUNNING))
    pending = await store.create_execution(_execution(ExecutionStatus.PENDING, unit_id="unit-2"))
    done = await store.create_execution(_execution(ExecutionStatus.COMPLETED, unit_id="unit-3"))
    item = await store.create_work_item(
        WorkItem(owner_id="owner-1", title="t", status=WorkItemStatus.IN_PROGRESS, execution_id=running.execution_id)
    )

    assert await store.recover_orphaned_executions(NOW) == 2

    for execution_id in (running.execution_id, pending.execution_id):
        recovered = await store.get_execution(execution_id)
        assert recovered.status == ExecutionStatus.FAILED
        assert recovered.error == ORPHANED_ERROR
        assert recovered.completed_at == NOW
    assert (await store.get_execution(done.execution_id)).status == ExecutionStatus.COMPLETED
    assert (await store.get_work_item(item.work_item_id)).status == WorkItemStatus.FAILED


async def test_list_executions_newest_first_with_limit(store: MemoryDispatchStore) -> None:
    for offset in range(3):
        execution = _execution(ExecutionStatus.COMPLETED)
        execution.created_at = NOW + timedelta(seconds=offset)
        await store.create_execution(execution)

    listed = await store.list_executions("unit-1", limit=2)
    assert [e.created_at for e in listed] == [NOW + timedelta(seconds=2), NOW + timedelta(seconds=1)]


async def test_logs_ordered_and_filtered(store: MemoryDispatchStore) -> None:
    execution = await store.create_execution(_execution())
    exec_id = execution.execution_id
    entries = [LogEntry(execution_id=exec_id, seq=seq, stage="thinking", message=str(seq)) for seq in (3, 1, 2)]
    await store.append_logs(entries)

    assert [e.seq for e in await store.list_logs(exec_id)] == [1, 2, 3]
    assert [e.seq for e in await store.list_logs(exec_id, after_seq=1)] == [2, 3]

    with pytest.raises(ExecutionNotFoundError):
        await store.append_logs([LogEntry(execution_id="missing", seq=1, stage="x", message="x")])
    with pytest.raises(ExecutionNotFoundError):
        await store.get_execution("missing")
