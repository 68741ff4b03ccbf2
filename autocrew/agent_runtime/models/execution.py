"""Execution and log entry domain models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from autocrew.agent_runtime.models.common import new_id, utcnow
from autocrew.agent_runtime.models.enums import ExecutionStatus, LogLevel, TriggerType

# ORM rows expose the JSONB column as ``metadata_`` (``metadata`` is reserved
# on declarative classes); plain dicts use ``metadata``.
_METADATA_ALIAS = AliasChoices("metadata_", "metadata")


class Execution(BaseModel):
    """One attempt to run a unit of work.

    Created before the provider is called; immutable once ``completed_at``
    is set.  ``cost`` is ``None`` when the provider did not report one,
    which is different from a reported zero.
    """

    model_config = ConfigDict(from_attributes=True)

    execution_id: str = Field(default_factory=new_id)
    unit_id: str
    owner_id: str
    work_item_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    trigger_type: TriggerType
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    cost: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=_METADATA_ALIAS)
    created_at: datetime = Field(default_factory=utcnow)


class LogEntry(BaseModel):
    """Append-only progress line.  ``seq`` is the per-execution emission order."""

    model_config = ConfigDict(from_attributes=True)

    log_id: str = Field(default_factory=new_id)
    execution_id: str
    seq: int
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    stage: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=_METADATA_ALIAS)
