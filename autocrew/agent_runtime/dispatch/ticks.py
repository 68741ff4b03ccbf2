"""APScheduler wiring for the polling loops.

Both the time scheduler and the task dispatcher are plain ``run_once``
coroutines; this module turns them into interval jobs on one
``AsyncIOScheduler``.  ``max_instances=1`` keeps a slow tick from
overlapping the next one and ``coalesce=True`` collapses ticks missed while
the loop was busy into a single run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler


def create_tick_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone="UTC")


def add_tick_job(
    scheduler: AsyncIOScheduler,
    job_id: str,
    func: Callable[[], Awaitable[object]],
    *,
    interval: float,
    jitter: float = 0,
    run_immediately: bool = True,
) -> None:
    """Register *func* as an interval job, replacing any job with the same ID."""
    options: dict[str, object] = {}
    if run_immediately:
        # Passing next_run_time=None would add the job paused, so only set it here.
        options["next_run_time"] = datetime.now(tz=UTC)
    scheduler.add_job(
        func,
        trigger="interval",
        seconds=interval,
        jitter=int(jitter) or None,
        id=job_id,
        name=job_id,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
        **options,
    )


def remove_tick_job(scheduler: AsyncIOScheduler, job_id: str) -> None:
    if scheduler.get_job(job_id) is not None:
        scheduler.remove_job(job_id)
