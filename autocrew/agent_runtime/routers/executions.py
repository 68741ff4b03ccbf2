"""Execution read endpoints and live log streams.

Executions are created only by the coordinator, so this router is read-only.
The ``stream`` endpoint replays what an execution has logged so far and then
follows it live until the terminal event; see ``streaming/sse.py``.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from sse_starlette.sse import EventSourceResponse

from autocrew.agent_runtime.deps import Runtime, Store
from autocrew.agent_runtime.errors import ExecutionNotFoundError
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.streaming.sse import execution_events

router = APIRouter(prefix="/executions", tags=["executions"])


def _not_found(execution_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Execution '{execution_id}' not found.")


@router.get("/list", response_model=list[Execution])
async def list_executions(
    store: Store,
    unit_id: str | None = Query(None, description="Only executions of this unit."),
    limit: int = Query(50, ge=1, le=500),
) -> list[Execution]:
    """List executions, newest first."""
    return await store.list_executions(unit_id, limit=limit)


@router.get("/{execution_id}/get", response_model=Execution)
async def get_execution(execution_id: str, store: Store) -> Execution:
    try:
        return await store.get_execution(execution_id)
    except ExecutionNotFoundError:
        raise _not_found(execution_id) from None


@router.get("/{execution_id}/logs", response_model=list[LogEntry])
async def list_logs(
    execution_id: str,
    store: Store,
    after_seq: int = Query(0, ge=0, description="Only entries with seq greater than this."),
) -> list[LogEntry]:
    """Persisted log entries in emission order."""
    try:
        await store.get_execution(execution_id)
    except ExecutionNotFoundError:
        raise _not_found(execution_id) from None
    return await store.list_logs(execution_id, after_seq=after_seq)


@router.get("/{execution_id}/stream")
async def stream_execution(execution_id: str, services: Runtime) -> EventSourceResponse:
    """SSE: replay, then live entries, then one ``completion`` event."""
    try:
        await services.store.get_execution(execution_id)
    except ExecutionNotFoundError:
        raise _not_found(execution_id) from None
    return EventSourceResponse(
        execution_events(
            execution_id,
            store=services.store,
            multiplexer=services.multiplexer,
            pending_logs=services.coordinator.pending_logs,
            queue_size=services.settings.subscriber_queue_size,
        ),
    )
