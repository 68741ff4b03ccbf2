"""Task dispatcher -- runs approved work items on their assigned units.

Each tick walks the approved items in priority order (critical first, oldest
first within a priority) and starts a task-driven execution for every item
whose actor is idle.  Items whose actor is busy stay ``approved`` and are
retried on a later tick.  Executions run as independent tasks; the tick only
waits for admission, never for completion.

The dispatcher is the only component that moves an item out of
``approved``: to ``in_progress`` on admission, then to ``completed`` or
``failed`` when the execution settles.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from autocrew.agent_runtime.dispatch.ticks import add_tick_job, remove_tick_job
from autocrew.agent_runtime.models.common import utcnow
from autocrew.agent_runtime.models.enums import ExecutionStatus, TriggerType, WorkItemStatus

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from autocrew.agent_runtime.execution.coordinator import ExecutionCoordinator, ExecutionHandle
    from autocrew.agent_runtime.models.unit import WorkItem
    from autocrew.agent_runtime.registry import ActorRegistry
    from autocrew.agent_runtime.store.base import DispatchStore

JOB_ID = "task-dispatcher"

_SUMMARY_LIMIT = 4000


class TaskDispatcher:
    def __init__(self, store: DispatchStore, coordinator: ExecutionCoordinator, registry: ActorRegistry) -> None:
        self._store = store
        self._coordinator = coordinator
        self._registry = registry
        self._scheduler: AsyncIOScheduler | None = None
        self._watchers: set[asyncio.Task[None]] = set()
        self.last_tick_at: datetime | None = None

    # -- Tick ------------------------------------------------------------------

    async def run_once(self) -> int:
        """Run one tick.  Returns the number of items dispatched."""
        self.last_tick_at = utcnow()
        try:
            items = await self._store.list_dispatchable_work_items()
        except Exception:
            logger.exception("Dispatcher tick: failed to list approved work items")
            return 0

        dispatched = 0
        for item in items:
            try:
                if await self._dispatch(item):
                    dispatched += 1
            except Exception:
                logger.exception("Dispatcher tick: failed to dispatch work item {}", item.work_item_id)
        if dispatched:
            logger.info("Dispatcher tick: dispatched {} of {} approved items", dispatched, len(items))
        return dispatched

    async def _dispatch(self, item: WorkItem) -> bool:
        actor_id = item.assigned_unit_id
        if actor_id is None:
            return False
        if self._registry.is_busy(actor_id):
            logger.debug("Work item {} waiting: unit {} is busy", item.work_item_id, actor_id)
            return False

        unit = await self._store.get_unit(actor_id)
        handle = await self._coordinator.start(unit, TriggerType.TASK_DRIVEN, work_item=item)
        if handle is None:
            return False

        # Watch first: the outcome is recorded even if the in_progress write fails.
        marked = asyncio.Event()
        watcher = asyncio.create_task(self._settle(item, handle, marked), name=f"work-item-{item.work_item_id}")
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

        try:
            await self._store.update_work_item(
                item.work_item_id,
                status=WorkItemStatus.IN_PROGRESS,
                execution_id=handle.execution_id,
            )
        except Exception:
            logger.exception(
                "Failed to mark work item {} in progress (execution={})", item.work_item_id, handle.execution_id
            )
        finally:
            marked.set()
        logger.info(
            "Work item {} ({}) dispatched to unit {} (execution={})",
            item.work_item_id,
            item.priority,
            actor_id,
            handle.execution_id,
        )
        return True

    async def _settle(self, item: WorkItem, handle: ExecutionHandle, marked: asyncio.Event) -> None:
        result = await handle.wait()
        await marked.wait()
        if result.status == ExecutionStatus.COMPLETED:
            status = WorkItemStatus.COMPLETED
            summary = result.output
        else:
            status = WorkItemStatus.FAILED
            summary = result.error
        if summary is not None:
            summary = summary[:_SUMMARY_LIMIT]
        try:
            await self._store.update_work_item(
                item.work_item_id,
                status=status,
                execution_id=handle.execution_id,
                completion_summary=summary,
            )
        except Exception:
            logger.exception("Failed to record outcome of work item {}", item.work_item_id)
            return
        logger.info("Work item {} {}", item.work_item_id, status)

    # -- Introspection ---------------------------------------------------------

    def in_flight(self) -> list[str]:
        """Snapshot of busy actor IDs."""
        return self._registry.active_ids()

    async def wait_settled(self, timeout: float | None = None) -> bool:
        """Wait until every dispatched item has recorded its outcome."""
        watchers = list(self._watchers)
        if not watchers:
            return True
        _done, pending = await asyncio.wait(watchers, timeout=timeout)
        return not pending

    # -- Lifecycle -------------------------------------------------------------

    def start(self, scheduler: AsyncIOScheduler, *, interval: float, jitter: float = 0) -> None:
        """Register the tick on *scheduler*.  The first tick runs immediately."""
        self._scheduler = scheduler
        add_tick_job(scheduler, JOB_ID, self.run_once, interval=interval, jitter=jitter)
        logger.info("Task dispatcher started (interval={}s, jitter={}s)", interval, jitter)

    def stop(self) -> None:
        if self._scheduler is not None:
            remove_tick_job(self._scheduler, JOB_ID)
            self._scheduler = None
            logger.info("Task dispatcher stopped")
