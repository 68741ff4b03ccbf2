"""FastAPI dependency injection for runtime services.

Usage in route handlers::

    @router.get("/{unit_id}/get")
    async def get_unit(unit_id: str, store: Store) -> UnitOfWork:
        ...

Dependencies raise HTTP 503 if the services were not initialised (the app
is still starting or has already shut down).
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from autocrew.agent_runtime.context import Services
from autocrew.agent_runtime.execution.coordinator import ExecutionCoordinator
from autocrew.agent_runtime.registry import ActorRegistry
from autocrew.agent_runtime.store.base import DispatchStore
from autocrew.agent_runtime.streaming.multiplexer import LogStreamMultiplexer
from autocrew.agent_runtime.tools.bridge import ToolProcessBridge


def get_services(request: Request) -> Services:
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Runtime services are not initialised.",
        )
    return services


def get_store(services: Annotated[Services, Depends(get_services)]) -> DispatchStore:
    return services.store


def get_coordinator(services: Annotated[Services, Depends(get_services)]) -> ExecutionCoordinator:
    return services.coordinator


def get_multiplexer(services: Annotated[Services, Depends(get_services)]) -> LogStreamMultiplexer:
    return services.multiplexer


def get_bridge(services: Annotated[Services, Depends(get_services)]) -> ToolProcessBridge:
    return services.bridge


def get_registry(services: Annotated[Services, Depends(get_services)]) -> ActorRegistry:
    return services.registry


# -- Annotated type aliases for concise route signatures ---------------------

Runtime = Annotated[Services, Depends(get_services)]
"""Annotated dependency: the whole service container."""

Store = Annotated[DispatchStore, Depends(get_store)]
"""Annotated dependency: the dispatch index (SQL or in-memory)."""

Coordinator = Annotated[ExecutionCoordinator, Depends(get_coordinator)]

Multiplexer = Annotated[LogStreamMultiplexer, Depends(get_multiplexer)]

Bridge = Annotated[ToolProcessBridge, Depends(get_bridge)]

Registry = Annotated[ActorRegistry, Depends(get_registry)]
