"""Unit of work and work item domain models.

A *unit of work* is a long-lived configured actor (scheduled routine or
on-demand agent).  A *work item* is a discrete task that may be assigned to
one.  Both are persisted as index rows; see ``db/tables.py``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from autocrew.agent_runtime.models.common import new_id, utcnow
from autocrew.agent_runtime.models.enums import (
    Priority,
    TriggerMode,
    UnitStatus,
    WorkItemStatus,
)

# -- Unit of work ------------------------------------------------------------


class UnitOfWork(BaseModel):
    """A configured actor.  Its ``unit_id`` is the actor identity for exclusion."""

    model_config = ConfigDict(from_attributes=True)

    unit_id: str = Field(default_factory=new_id)
    owner_id: str
    name: str
    trigger_mode: TriggerMode = TriggerMode.ON_DEMAND
    frequency: str | None = Field(default=None, description="Schedule label: hourly, auto, daily, weekly, manual")
    status: UnitStatus = UnitStatus.ACTIVE
    role: str = Field(default="", description="Persona / system prompt.  May contain Jinja2 syntax.")
    goal: str = Field(default="", description="What a routine run should accomplish.")
    tool_servers: list[str] = Field(default_factory=list, description="Declared tool server types")
    config: dict[str, Any] = Field(default_factory=dict, description="Free-form: max_turns, guardrails, ...")
    session_token: str | None = Field(default=None, description="Opaque provider continuity token")
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def actor_id(self) -> str:
        return self.unit_id

    @property
    def max_turns(self) -> int | None:
        value = self.config.get("max_turns")
        return int(value) if value is not None else None


# -- Work item ---------------------------------------------------------------


class WorkItem(BaseModel):
    """A discrete task.  Only the dispatcher moves it out of ``approved``."""

    model_config = ConfigDict(from_attributes=True)

    work_item_id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    description: str = ""
    status: WorkItemStatus = WorkItemStatus.PENDING
    priority: Priority = Priority.MEDIUM
    assigned_unit_id: str | None = None
    execution_id: str | None = None
    completion_summary: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
