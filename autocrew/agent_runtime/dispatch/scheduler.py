"""Time scheduler -- triggers scheduled units whose next run time has elapsed.

Each tick lists active scheduled units with ``next_run_at`` unset (never run)
or in the past and hands them to the execution coordinator.  When a trigger
is accepted the unit's ``last_run_at`` becomes *now* and ``next_run_at`` is
computed from *now*, not from the missed timestamp, so a unit that was due
several periods ago during an outage runs once and then resumes its normal
cadence.  A unit whose actor is busy keeps its ``next_run_at`` and is simply
picked up again on a later tick.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from autocrew.agent_runtime.dispatch.ticks import add_tick_job, remove_tick_job
from autocrew.agent_runtime.models.common import utcnow
from autocrew.agent_runtime.models.enums import TriggerType

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from autocrew.agent_runtime.execution.coordinator import ExecutionCoordinator
    from autocrew.agent_runtime.models.unit import UnitOfWork
    from autocrew.agent_runtime.store.base import DispatchStore

JOB_ID = "time-scheduler"

FREQUENCY_INTERVALS: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "auto": timedelta(hours=6),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}

MANUAL_FREQUENCIES = frozenset({"manual", ""})


def next_run_time(frequency: str | None, now: datetime) -> datetime | None:
    """Next run after *now* for a frequency label, or ``None`` if it never auto-runs."""
    if frequency is None:
        return None
    interval = FREQUENCY_INTERVALS.get(frequency.strip().lower())
    if interval is None:
        return None
    return now + interval


class TimeScheduler:
    def __init__(self, store: DispatchStore, coordinator: ExecutionCoordinator) -> None:
        self._store = store
        self._coordinator = coordinator
        self._scheduler: AsyncIOScheduler | None = None
        self.last_tick_at: datetime | None = None

    # -- Tick ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> int:
        """Run one tick.  Returns the number of units triggered."""
        now = now or utcnow()
        self.last_tick_at = now
        try:
            units = await self._store.list_due_units(now)
        except Exception:
            logger.exception("Scheduler tick: failed to list due units")
            return 0

        triggered = 0
        for unit in units:
            try:
                if await self._trigger(unit, now):
                    triggered += 1
            except Exception:
                logger.exception("Scheduler tick: failed to trigger unit {} ({})", unit.unit_id, unit.name)
        if triggered:
            logger.info("Scheduler tick: triggered {} of {} due units", triggered, len(units))
        return triggered

    async def _trigger(self, unit: UnitOfWork, now: datetime) -> bool:
        upcoming = next_run_time(unit.frequency, now)
        if upcoming is None:
            frequency = (unit.frequency or "").strip().lower()
            if frequency not in MANUAL_FREQUENCIES:
                logger.warning("Unit {} has unknown frequency {!r}; not scheduling it", unit.unit_id, unit.frequency)
            return False

        handle = await self._coordinator.start(unit, TriggerType.SCHEDULED)
        if handle is None:
            logger.debug("Unit {} busy; keeping next_run_at={}", unit.unit_id, unit.next_run_at)
            return False

        await self._store.record_unit_run(unit.unit_id, last_run_at=now, next_run_at=upcoming)
        logger.info(
            "Scheduled unit {} triggered (execution={}, next_run_at={})",
            unit.unit_id,
            handle.execution_id,
            upcoming.isoformat(),
        )
        return True

    # -- Lifecycle -------------------------------------------------------------

    def start(self, scheduler: AsyncIOScheduler, *, interval: float, jitter: float = 0) -> None:
        """Register the tick on *scheduler*.  The first tick runs immediately."""
        self._scheduler = scheduler
        add_tick_job(scheduler, JOB_ID, self.run_once, interval=interval, jitter=jitter)
        logger.info("Time scheduler started (interval={}s, jitter={}s)", interval, jitter)

    def stop(self) -> None:
        if self._scheduler is not None:
            remove_tick_job(self._scheduler, JOB_ID)
            self._scheduler = None
            logger.info("Time scheduler stopped")
