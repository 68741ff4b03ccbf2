"""Data models for the agent runtime."""

from autocrew.agent_runtime.models.api import (
    HealthResponse,
    TriggerRequest,
    TriggerResponse,
    UnitCreate,
    UnitUpdate,
    WorkItemAssign,
    WorkItemCreate,
)
from autocrew.agent_runtime.models.enums import (
    ExecutionStatus,
    LogLevel,
    Priority,
    StreamEventType,
    TriggerMode,
    TriggerType,
    UnitStatus,
    WorkItemStatus,
)
from autocrew.agent_runtime.models.events import StreamEvent
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.models.session import SessionState
from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem

__all__ = [
    # Execution
    "Execution",
    # Enums
    "ExecutionStatus",
    # API schemas
    "HealthResponse",
    "LogEntry",
    "LogLevel",
    "Priority",
    # Session
    "SessionState",
    # Events
    "StreamEvent",
    "StreamEventType",
    "TriggerMode",
    "TriggerRequest",
    "TriggerResponse",
    "TriggerType",
    "UnitCreate",
    # Unit of work
    "UnitOfWork",
    "UnitStatus",
    "UnitUpdate",
    "WorkItem",
    "WorkItemAssign",
    "WorkItemCreate",
    "WorkItemStatus",
]
