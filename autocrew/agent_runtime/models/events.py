"""Stream event models.

Defines the envelope delivered to live observers over SSE.  Every event
carries its ``execution_id`` so that owner-scope feeds, which interleave
several executions, can be demultiplexed by the client.
"""

from __future__ import annotations

from pydantic import BaseModel

from autocrew.agent_runtime.models.enums import ExecutionStatus, StreamEventType
from autocrew.agent_runtime.models.execution import LogEntry


class StreamEvent(BaseModel):
    """Wire-format event envelope sent over SSE."""

    type: StreamEventType
    execution_id: str
    entry: LogEntry | None = None
    status: ExecutionStatus | None = None

    @classmethod
    def log(cls, entry: LogEntry) -> StreamEvent:
        return cls(type=StreamEventType.LOG, execution_id=entry.execution_id, entry=entry)

    @classmethod
    def completion(cls, execution_id: str, status: ExecutionStatus) -> StreamEvent:
        return cls(type=StreamEventType.COMPLETION, execution_id=execution_id, status=status)

    @property
    def seq(self) -> int | None:
        return self.entry.seq if self.entry is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.type == StreamEventType.COMPLETION
