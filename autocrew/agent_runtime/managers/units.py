"""Unit of work operations.

Units are never deleted: ``disable_unit`` is the soft delete.  It also tears
down the unit's pooled tool server processes, unless an execution is still
using them; the coordinator stops those once that execution finishes.

``next_run_at`` and ``session_token`` are not writable from here; the time
scheduler and the execution coordinator own them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from autocrew.agent_runtime.dispatch.scheduler import FREQUENCY_INTERVALS, MANUAL_FREQUENCIES
from autocrew.agent_runtime.models.enums import TriggerMode, UnitStatus
from autocrew.agent_runtime.models.unit import UnitOfWork

if TYPE_CHECKING:
    from autocrew.agent_runtime.models.api import UnitCreate, UnitUpdate
    from autocrew.agent_runtime.registry import ActorRegistry
    from autocrew.agent_runtime.store.base import DispatchStore
    from autocrew.agent_runtime.tools.bridge import ToolProcessBridge


def _check_frequency(unit: UnitOfWork) -> None:
    if unit.trigger_mode != TriggerMode.SCHEDULED:
        return
    frequency = (unit.frequency or "").strip().lower()
    if frequency not in FREQUENCY_INTERVALS and frequency not in MANUAL_FREQUENCIES:
        logger.warning("Unit {} has unknown frequency {!r}; it will not run on a schedule", unit.unit_id, unit.frequency)


async def create_unit(store: DispatchStore, body: UnitCreate) -> UnitOfWork:
    """Create a new unit of work.

    Raises ``DuplicateUnitError`` if the ID already exists.
    """
    data = body.model_dump(exclude_none=True)
    unit = UnitOfWork.model_validate(data)
    _check_frequency(unit)
    created = await store.create_unit(unit)
    logger.info("Unit {} created (owner={}, trigger_mode={})", created.unit_id, created.owner_id, created.trigger_mode)
    return created


async def list_units(store: DispatchStore, owner_id: str | None = None) -> list[UnitOfWork]:
    return await store.list_units(owner_id)


async def get_unit(store: DispatchStore, unit_id: str) -> UnitOfWork:
    """Get a unit by ID.  Raises ``UnitNotFoundError`` if missing."""
    return await store.get_unit(unit_id)


async def _stop_tools(unit: UnitOfWork, bridge: ToolProcessBridge | None, registry: ActorRegistry | None) -> int:
    if bridge is None:
        return 0
    if registry is not None and registry.is_busy(unit.actor_id):
        # The running execution tears them down when it finalizes.
        logger.info("Unit {} is running; tool processes stay up until it finishes", unit.unit_id)
        return 0
    return await bridge.shutdown_actor(unit.actor_id)


async def update_unit(
    store: DispatchStore,
    unit_id: str,
    body: UnitUpdate,
    bridge: ToolProcessBridge | None = None,
    registry: ActorRegistry | None = None,
) -> UnitOfWork:
    """Partially update a unit.  Raises ``UnitNotFoundError`` if missing."""
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        return await store.get_unit(unit_id)
    unit = await store.update_unit(unit_id, **changes)
    _check_frequency(unit)
    if unit.status != UnitStatus.ACTIVE:
        await _stop_tools(unit, bridge, registry)
    return unit


async def disable_unit(
    store: DispatchStore,
    unit_id: str,
    bridge: ToolProcessBridge | None = None,
    registry: ActorRegistry | None = None,
) -> UnitOfWork:
    """Soft-delete a unit.  An execution already in flight runs to completion."""
    unit = await store.update_unit(unit_id, status=UnitStatus.DISABLED)
    stopped = await _stop_tools(unit, bridge, registry)
    if stopped:
        logger.info("Unit {} disabled; stopped {} tool processes", unit_id, stopped)
    logger.info("Unit {} disabled", unit_id)
    return unit
