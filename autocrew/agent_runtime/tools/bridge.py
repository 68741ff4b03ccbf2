"""Tool process bridge -- a pool of tool servers keyed by actor and server type.

Processes are long-lived: the first request for ``(actor_id, server_type)``
spawns one, later requests reuse it, and one that exits is evicted so the
next request respawns it.  Spawning is guarded by a per-key lock so two
concurrent first requests do not start two processes.

Credentials are looked up at spawn time and passed only through the child's
environment.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from autocrew.agent_runtime.errors import MissingCredentialsError, ToolSpawnError
from autocrew.agent_runtime.tools.catalog import ToolServerCatalog
from autocrew.agent_runtime.tools.credentials import CredentialStore
from autocrew.agent_runtime.tools.process import ToolCallResult, ToolDescriptor, ToolProcess

logger = logging.getLogger(__name__)

ProcessKey = tuple[str, str]


@dataclass
class ToolEndpoint:
    """Request/response wrapper over one pooled server for one actor.

    Holds the pool rather than the process so that a crashed server is
    transparently respawned on the next call.
    """

    bridge: ToolProcessBridge
    actor_id: str
    owner_id: str
    server_type: str
    tools: list[ToolDescriptor] = field(default_factory=list)

    async def call(self, tool_name: str, arguments: dict[str, Any], *, timeout: float | None = None) -> ToolCallResult:
        return await self.bridge.call_tool(
            self.actor_id,
            self.owner_id,
            self.server_type,
            tool_name,
            arguments,
            timeout=timeout,
        )


class ToolProcessBridge:
    """Owns every tool server process in the runtime."""

    def __init__(
        self,
        catalog: ToolServerCatalog,
        credentials: CredentialStore,
        *,
        request_timeout: float = 30.0,
        shutdown_timeout: float = 5.0,
    ) -> None:
        self._catalog = catalog
        self._credentials = credentials
        self._request_timeout = request_timeout
        self._shutdown_timeout = shutdown_timeout
        self._processes: dict[ProcessKey, ToolProcess] = {}
        self._locks: dict[ProcessKey, asyncio.Lock] = {}
        self._closed = False

    # -- Pool ------------------------------------------------------------------

    async def acquire(self, actor_id: str, owner_id: str, server_type: str) -> ToolProcess:
        """Return a live process for the key, spawning one if needed."""
        if self._closed:
            msg = "Tool bridge is shut down"
            raise ToolSpawnError(msg)

        key = (actor_id, server_type)
        process = self._processes.get(key)
        if process is not None and process.alive:
            return process

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            process = self._processes.get(key)
            if process is not None and process.alive:
                return process
            if process is not None:
                self._processes.pop(key, None)
            process = await self._spawn(key, owner_id)
            self._processes[key] = process
            return process

    async def _spawn(self, key: ProcessKey, owner_id: str) -> ToolProcess:
        actor_id, server_type = key
        spec = self._catalog.get(server_type)
        if spec is None:
            msg = f"Unknown tool server type '{server_type}'"
            raise ToolSpawnError(msg)

        env = {**os.environ, **spec.env}
        if spec.requires_credentials:
            credentials = await self._credentials.get_credentials(owner_id, server_type)
            if not credentials:
                msg = f"No credentials for tool server '{server_type}' (owner={owner_id})"
                raise MissingCredentialsError(msg)
            missing = sorted(f for f in spec.credential_env.values() if f not in credentials)
            if missing:
                msg = f"Credentials for '{server_type}' lack fields: {', '.join(missing)}"
                raise MissingCredentialsError(msg)
            env.update({var: credentials[name] for var, name in spec.credential_env.items()})

        process = ToolProcess(
            server_type,
            spec,
            env=env,
            request_timeout=self._request_timeout,
            shutdown_timeout=self._shutdown_timeout,
            on_exit=lambda p: self._evict(key, p),
        )
        logger.info("Spawning tool server %s for actor %s", server_type, actor_id)
        await process.start()
        return process

    def _evict(self, key: ProcessKey, process: ToolProcess) -> None:
        if self._processes.get(key) is process:
            del self._processes[key]
            if not self._closed:
                logger.warning("Tool server %s for actor %s exited; evicted from pool", key[1], key[0])

    # -- Façade ----------------------------------------------------------------

    async def endpoint(self, actor_id: str, owner_id: str, server_type: str) -> ToolEndpoint:
        """Spawn (or reuse) the server and return an endpoint with its tool list."""
        process = await self.acquire(actor_id, owner_id, server_type)
        return ToolEndpoint(self, actor_id, owner_id, server_type, tools=list(process.tools))

    async def call_tool(
        self,
        actor_id: str,
        owner_id: str,
        server_type: str,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> ToolCallResult:
        process = await self.acquire(actor_id, owner_id, server_type)
        return await process.call_tool(tool_name, arguments, timeout=timeout)

    # -- Lifecycle -------------------------------------------------------------

    async def shutdown_actor(self, actor_id: str) -> int:
        """Stop every process belonging to *actor_id* (e.g. the unit was disabled)."""
        keys = [k for k in self._processes if k[0] == actor_id]
        processes = [self._processes.pop(k) for k in keys]
        await self._shutdown_all(processes)
        return len(processes)

    async def shutdown(self) -> None:
        """Stop every process.  Further ``acquire`` calls fail."""
        self._closed = True
        processes = list(self._processes.values())
        self._processes.clear()
        await self._shutdown_all(processes)
        if processes:
            logger.info("Tool bridge: stopped %d tool servers", len(processes))

    async def _shutdown_all(self, processes: list[ToolProcess]) -> None:
        results = await asyncio.gather(*(p.shutdown() for p in processes), return_exceptions=True)
        for process, result in zip(processes, results, strict=True):
            if isinstance(result, Exception):
                logger.error("Failed to stop tool server %s (pid=%s): %r", process.server_type, process.pid, result)

    @property
    def process_count(self) -> int:
        return len(self._processes)

    def process_for(self, actor_id: str, server_type: str) -> ToolProcess | None:
        return self._processes.get((actor_id, server_type))
