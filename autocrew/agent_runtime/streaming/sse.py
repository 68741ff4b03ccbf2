"""SSE event generators for execution and owner streams.

A client attaching to a running execution must see a consistent tail: every
entry emitted so far, in order, then live entries, then the terminal event.
Three sources are merged to get there:

1. the live sink, subscribed *first* so nothing published afterwards is missed;
2. entries the execution's log writer has accepted but not yet committed
   (snapshotted immediately after subscribing, before any await);
3. entries already persisted in the store.

Anything published before the snapshot is in (2) or (3); anything after is in
(1).  Duplicates across sources are dropped by ``seq``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from typing import TYPE_CHECKING, Any

from autocrew.agent_runtime.models.events import StreamEvent
from autocrew.agent_runtime.streaming.sinks import QueueSink

if TYPE_CHECKING:
    from autocrew.agent_runtime.models.execution import LogEntry
    from autocrew.agent_runtime.store.base import DispatchStore
    from autocrew.agent_runtime.streaming.multiplexer import LogStreamMultiplexer


def to_sse(event: StreamEvent) -> dict[str, Any]:
    """Render an event as an ``sse_starlette`` message dict."""
    message: dict[str, Any] = {"event": event.type.value, "data": event.model_dump_json()}
    if event.seq is not None:
        message["id"] = f"{event.execution_id}:{event.seq}"
    return message


async def execution_events(
    execution_id: str,
    *,
    store: DispatchStore,
    multiplexer: LogStreamMultiplexer,
    pending_logs: Callable[[str], Sequence[LogEntry]],
    queue_size: int = 256,
) -> AsyncIterator[dict[str, Any]]:
    """Replay then follow one execution until its terminal event."""
    sink = QueueSink(queue_size)
    multiplexer.subscribe_execution(execution_id, sink)
    try:
        unpersisted = list(pending_logs(execution_id))
        execution = await store.get_execution(execution_id)
        persisted = await store.list_logs(execution_id)

        last_seq = 0
        for entry in sorted({e.seq: e for e in [*persisted, *unpersisted]}.values(), key=lambda e: e.seq):
            last_seq = entry.seq
            yield to_sse(StreamEvent.log(entry))

        if execution.status.is_terminal:
            yield to_sse(StreamEvent.completion(execution_id, execution.status))
            return

        async for event in sink:
            if event.seq is not None:
                if event.seq <= last_seq:
                    continue
                last_seq = event.seq
            yield to_sse(event)
            if event.is_terminal:
                return
    finally:
        multiplexer.unsubscribe_execution(execution_id, sink)


async def owner_events(
    owner_id: str,
    *,
    multiplexer: LogStreamMultiplexer,
    queue_size: int = 256,
) -> AsyncIterator[dict[str, Any]]:
    """Follow every execution of *owner_id* until the sink is closed."""
    sink = QueueSink(queue_size)
    multiplexer.subscribe_owner(owner_id, sink)
    try:
        async for event in sink:
            yield to_sse(event)
    finally:
        multiplexer.unsubscribe_owner(owner_id, sink)
