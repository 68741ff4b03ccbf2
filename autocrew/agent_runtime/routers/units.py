"""Unit of work endpoints (RPC-style).

All write operations use POST; reads use GET.  Thin HTTP adapter --
delegates to the units manager and the execution coordinator.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from autocrew.agent_runtime.deps import Bridge, Coordinator, Registry, Store
from autocrew.agent_runtime.errors import (
    ActorBusyError,
    DuplicateUnitError,
    ShuttingDownError,
    UnitDisabledError,
    UnitNotFoundError,
)
from autocrew.agent_runtime.managers import units as manager
from autocrew.agent_runtime.models.api import TriggerRequest, TriggerResponse, UnitCreate, UnitUpdate
from autocrew.agent_runtime.models.unit import UnitOfWork

router = APIRouter(prefix="/units", tags=["units"])


def _not_found(unit_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Unit '{unit_id}' not found.")


@router.post("/create", response_model=UnitOfWork, status_code=status.HTTP_201_CREATED)
async def create_unit(body: UnitCreate, store: Store) -> UnitOfWork:
    """Create a new unit of work."""
    try:
        return await manager.create_unit(store, body)
    except DuplicateUnitError:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Unit '{body.unit_id}' already exists.") from None


@router.get("/list", response_model=list[UnitOfWork])
async def list_units(
    store: Store,
    owner_id: str | None = Query(None, description="Only units belonging to this owner."),
) -> list[UnitOfWork]:
    """List units, newest first."""
    return await manager.list_units(store, owner_id)


@router.get("/{unit_id}/get", response_model=UnitOfWork)
async def get_unit(unit_id: str, store: Store) -> UnitOfWork:
    try:
        return await manager.get_unit(store, unit_id)
    except UnitNotFoundError:
        raise _not_found(unit_id) from None


@router.post("/{unit_id}/update", response_model=UnitOfWork)
async def update_unit(unit_id: str, body: UnitUpdate, store: Store, bridge: Bridge, registry: Registry) -> UnitOfWork:
    """Partially update an existing unit."""
    try:
        return await manager.update_unit(store, unit_id, body, bridge, registry)
    except UnitNotFoundError:
        raise _not_found(unit_id) from None


@router.post("/{unit_id}/disable", response_model=UnitOfWork)
async def disable_unit(unit_id: str, store: Store, bridge: Bridge, registry: Registry) -> UnitOfWork:
    """Soft-delete a unit.  Units are never removed."""
    try:
        return await manager.disable_unit(store, unit_id, bridge, registry)
    except UnitNotFoundError:
        raise _not_found(unit_id) from None


@router.post("/{unit_id}/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_unit(unit_id: str, coordinator: Coordinator, body: TriggerRequest | None = None) -> TriggerResponse:
    """Run a unit now.  Returns once the execution is admitted, not when it finishes."""
    trigger_type = body.trigger_type if body is not None else TriggerRequest().trigger_type
    try:
        handle = await coordinator.trigger_now(unit_id, trigger_type)
    except UnitNotFoundError:
        raise _not_found(unit_id) from None
    except (UnitDisabledError, ActorBusyError) as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
    except ShuttingDownError:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Runtime is shutting down.") from None
    return TriggerResponse(
        execution_id=handle.execution_id,
        unit_id=unit_id,
        status=handle.execution.status,
    )
