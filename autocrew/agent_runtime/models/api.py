"""API request / response schemas.

These thin schemas sit between HTTP and the store.  They are separate from
the domain models in ``unit.py`` / ``execution.py`` because they serve a
different purpose:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.

Responses reuse the domain models directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from autocrew.agent_runtime.models.enums import (
    ExecutionStatus,
    Priority,
    TriggerMode,
    TriggerType,
    UnitStatus,
)

# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class UnitCreate(BaseModel):
    """Input for creating a new unit of work."""

    unit_id: str | None = Field(default=None, description="Optional; auto-generated if omitted.")
    owner_id: str
    name: str
    trigger_mode: TriggerMode = TriggerMode.ON_DEMAND
    frequency: str | None = None
    role: str = ""
    goal: str = ""
    tool_servers: list[str] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    next_run_at: datetime | None = Field(
        default=None,
        description="First run time for scheduled units.  Unset means 'on the next tick'.",
    )


class UnitUpdate(BaseModel):
    """Partial update -- only fields explicitly set by the caller are applied.

    ``next_run_at`` and ``session_token`` are deliberately absent: they are
    owned by the scheduler and the execution coordinator respectively.
    """

    name: str | None = None
    trigger_mode: TriggerMode | None = None
    frequency: str | None = None
    status: UnitStatus | None = None
    role: str | None = None
    goal: str | None = None
    tool_servers: list[str] | None = None
    config: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Work item
# ---------------------------------------------------------------------------


class WorkItemCreate(BaseModel):
    owner_id: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    assigned_unit_id: str | None = None


class WorkItemAssign(BaseModel):
    assigned_unit_id: str


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TriggerRequest(BaseModel):
    """Body of a manual trigger.  Scheduled and task-driven runs are started internally."""

    trigger_type: TriggerType = TriggerType.MANUAL

    @field_validator("trigger_type")
    @classmethod
    def _manual_only(cls, value: TriggerType) -> TriggerType:
        if value != TriggerType.MANUAL:
            msg = f"trigger_type must be 'manual', got '{value}'"
            raise ValueError(msg)
        return value


class TriggerResponse(BaseModel):
    """Returned when a manual trigger is accepted."""

    execution_id: str
    unit_id: str
    status: ExecutionStatus


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str = "ok"
    in_flight: int = 0
    in_flight_actors: list[str] = Field(default_factory=list)
    scheduler_last_tick_at: datetime | None = None
    dispatcher_last_tick_at: datetime | None = None
    execution_subscribers: int = 0
    owner_subscribers: int = 0
    tool_processes: int = 0
