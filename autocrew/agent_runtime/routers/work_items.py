"""Work item endpoints (RPC-style)."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from autocrew.agent_runtime.deps import Store
from autocrew.agent_runtime.errors import InvalidTransitionError, UnitNotFoundError, WorkItemNotFoundError
from autocrew.agent_runtime.managers import work_items as manager
from autocrew.agent_runtime.models.api import WorkItemAssign, WorkItemCreate
from autocrew.agent_runtime.models.enums import WorkItemStatus
from autocrew.agent_runtime.models.unit import WorkItem

router = APIRouter(prefix="/work-items", tags=["work-items"])


def _not_found(work_item_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Work item '{work_item_id}' not found.")


@router.post("/create", response_model=WorkItem, status_code=status.HTTP_201_CREATED)
async def create_work_item(body: WorkItemCreate, store: Store) -> WorkItem:
    """Create a pending work item.  It dispatches only after approval."""
    try:
        return await manager.create_work_item(store, body)
    except UnitNotFoundError:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            detail=f"Unit '{body.assigned_unit_id}' not found.",
        ) from None


@router.get("/list", response_model=list[WorkItem])
async def list_work_items(
    store: Store,
    owner_id: str | None = Query(None),
    item_status: WorkItemStatus | None = Query(None, alias="status", description="Filter by status."),
) -> list[WorkItem]:
    return await manager.list_work_items(store, owner_id, item_status)


@router.get("/{work_item_id}/get", response_model=WorkItem)
async def get_work_item(work_item_id: str, store: Store) -> WorkItem:
    try:
        return await manager.get_work_item(store, work_item_id)
    except WorkItemNotFoundError:
        raise _not_found(work_item_id) from None


@router.post("/{work_item_id}/approve", response_model=WorkItem)
async def approve_work_item(work_item_id: str, store: Store) -> WorkItem:
    """Queue an item for the task dispatcher."""
    try:
        return await manager.approve_work_item(store, work_item_id)
    except WorkItemNotFoundError:
        raise _not_found(work_item_id) from None
    except InvalidTransitionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None


@router.post("/{work_item_id}/assign", response_model=WorkItem)
async def assign_work_item(work_item_id: str, body: WorkItemAssign, store: Store) -> WorkItem:
    try:
        return await manager.assign_work_item(store, work_item_id, body.assigned_unit_id)
    except WorkItemNotFoundError:
        raise _not_found(work_item_id) from None
    except UnitNotFoundError:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            detail=f"Unit '{body.assigned_unit_id}' not found.",
        ) from None
    except InvalidTransitionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
