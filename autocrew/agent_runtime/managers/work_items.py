"""Work item operations.

Approval is the only externally driven transition into the dispatch queue.
Everything after ``approved`` belongs to the task dispatcher.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from autocrew.agent_runtime.errors import InvalidTransitionError
from autocrew.agent_runtime.models.enums import WorkItemStatus
from autocrew.agent_runtime.models.unit import WorkItem

if TYPE_CHECKING:
    from autocrew.agent_runtime.models.api import WorkItemCreate
    from autocrew.agent_runtime.store.base import DispatchStore

_APPROVABLE = frozenset({WorkItemStatus.PENDING, WorkItemStatus.BLOCKED, WorkItemStatus.FAILED})
_ASSIGNABLE = frozenset({WorkItemStatus.PENDING, WorkItemStatus.BLOCKED, WorkItemStatus.APPROVED, WorkItemStatus.FAILED})


async def create_work_item(store: DispatchStore, body: WorkItemCreate) -> WorkItem:
    """Create a pending work item.

    Raises ``UnitNotFoundError`` if ``assigned_unit_id`` names a missing unit.
    """
    if body.assigned_unit_id is not None:
        await store.get_unit(body.assigned_unit_id)
    item = await store.create_work_item(WorkItem.model_validate(body.model_dump()))
    logger.info("Work item {} created (priority={}, unit={})", item.work_item_id, item.priority, item.assigned_unit_id)
    return item


async def list_work_items(
    store: DispatchStore,
    owner_id: str | None = None,
    status: WorkItemStatus | None = None,
) -> list[WorkItem]:
    return await store.list_work_items(owner_id, status)


async def get_work_item(store: DispatchStore, work_item_id: str) -> WorkItem:
    """Raises ``WorkItemNotFoundError`` if missing."""
    return await store.get_work_item(work_item_id)


async def approve_work_item(store: DispatchStore, work_item_id: str) -> WorkItem:
    """Move an item into the dispatch queue.

    Pending, blocked and failed items can be approved; a failed item is
    approved again to retry it.  Raises ``InvalidTransitionError`` otherwise.
    """
    item = await store.get_work_item(work_item_id)
    if item.status not in _APPROVABLE:
        msg = f"Work item '{work_item_id}' is {item.status}; only pending, blocked or failed items can be approved"
        raise InvalidTransitionError(msg)
    if item.assigned_unit_id is None:
        logger.warning("Work item {} approved without an assigned unit; it will not dispatch", work_item_id)
    approved = await store.update_work_item(work_item_id, status=WorkItemStatus.APPROVED)
    logger.info("Work item {} approved", work_item_id)
    return approved


async def assign_work_item(store: DispatchStore, work_item_id: str, unit_id: str) -> WorkItem:
    """Assign (or reassign) an item to a unit.

    Raises ``UnitNotFoundError`` / ``WorkItemNotFoundError`` if either is
    missing and ``InvalidTransitionError`` once the item has been dispatched.
    """
    item = await store.get_work_item(work_item_id)
    if item.status not in _ASSIGNABLE:
        msg = f"Work item '{work_item_id}' is {item.status} and can no longer be reassigned"
        raise InvalidTransitionError(msg)
    await store.get_unit(unit_id)
    return await store.update_work_item(work_item_id, assigned_unit_id=unit_id)
