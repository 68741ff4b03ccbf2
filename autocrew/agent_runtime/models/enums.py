"""Shared enumerations used across the agent runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Unit of work ------------------------------------------------------------


class TriggerMode(StrEnum):
    """How a unit of work gets started."""

    SCHEDULED = "scheduled"
    ON_DEMAND = "on_demand"
    TASK_DRIVEN = "task_driven"


class UnitStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


# -- Work item ---------------------------------------------------------------


class WorkItemStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Dispatch rank: lower runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}


# -- Execution ---------------------------------------------------------------


class ExecutionStatus(StrEnum):
    """Durable execution status persisted in PG."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class TriggerType(StrEnum):
    """What caused an execution."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    TASK_DRIVEN = "task_driven"


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# -- Streaming ---------------------------------------------------------------


class StreamEventType(StrEnum):
    """Event types delivered to live observers."""

    LOG = "log"
    COMPLETION = "completion"
