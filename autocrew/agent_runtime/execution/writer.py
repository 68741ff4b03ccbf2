"""Per-execution log persistence.

Log entries are published to live observers first and then handed to a
``LogWriter``, which persists them in batches from its own task.  A slow
database therefore delays persistence but never the live stream.  The
queue is bounded: only when storage falls ``maxsize`` entries behind does
``submit`` start waiting, which throttles the producing execution rather
than growing memory.

Entries stay visible through ``unpersisted()`` from the moment they are
submitted until their batch commits, so a late subscriber can replay them
before they reach the database.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autocrew.agent_runtime.models.execution import LogEntry
    from autocrew.agent_runtime.store.base import DispatchStore

logger = logging.getLogger(__name__)


class LogWriter:
    def __init__(
        self,
        store: DispatchStore,
        execution_id: str,
        *,
        maxsize: int = 1000,
        batch_size: int = 50,
    ) -> None:
        self._store = store
        self._execution_id = execution_id
        self._queue: asyncio.Queue[LogEntry | None] = asyncio.Queue(maxsize=maxsize)
        self._batch_size = batch_size
        self._unpersisted: dict[int, LogEntry] = {}
        self._task: asyncio.Task[None] | None = None
        self.persisted = 0
        self.dropped = 0

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"log-writer-{self._execution_id}")

    async def submit(self, entry: LogEntry) -> None:
        self._unpersisted[entry.seq] = entry
        await self._queue.put(entry)

    def unpersisted(self) -> list[LogEntry]:
        """Entries accepted but not yet committed, in ``seq`` order."""
        return [self._unpersisted[seq] for seq in sorted(self._unpersisted)]

    async def close(self) -> None:
        """Flush everything submitted so far and stop the writer task."""
        if self._task is None:
            return
        await self._queue.put(None)
        await self._task
        self._task = None

    # -- Internals -------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            first = await self._queue.get()
            stop = first is None
            batch: list[LogEntry] = [] if first is None else [first]
            while not stop and len(batch) < self._batch_size:
                try:
                    entry = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if entry is None:
                    stop = True
                else:
                    batch.append(entry)
            if batch:
                await self._flush(batch)
            if stop:
                return

    async def _flush(self, batch: list[LogEntry]) -> None:
        try:
            await self._store.append_logs(batch)
        except Exception:
            self.dropped += len(batch)
            logger.exception("Failed to persist %d log entries for execution %s", len(batch), self._execution_id)
        else:
            self.persisted += len(batch)
        finally:
            for entry in batch:
                self._unpersisted.pop(entry.seq, None)
