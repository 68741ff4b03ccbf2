"""Owner-scope activity feed.

One SSE connection receives the log and completion events of every execution
belonging to the owner.  Each event carries its ``execution_id``.  There is
no replay: the feed starts at the moment of subscription.
"""

from __future__ import annotations

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from autocrew.agent_runtime.deps import Runtime
from autocrew.agent_runtime.streaming.sse import owner_events

router = APIRouter(prefix="/owners", tags=["owners"])


@router.get("/{owner_id}/stream")
async def stream_owner(owner_id: str, services: Runtime) -> EventSourceResponse:
    return EventSourceResponse(
        owner_events(
            owner_id,
            multiplexer=services.multiplexer,
            queue_size=services.settings.subscriber_queue_size,
        ),
    )
