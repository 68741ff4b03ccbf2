"""Execution coordinator -- admits, runs, and finalizes executions.

Every run of a unit of work, whatever triggered it, goes through
``ExecutionCoordinator.start``:

1. **Admit**: claim the actor in the registry (synchronously, before any
   await), then confirm storage has no in-flight execution for the unit.
2. **Record**: create the execution row as ``pending``.
3. **Run** (in its own task): mark ``running``, resolve tool servers through
   the bridge, render prompts, and stream provider events.  Each event
   becomes a log entry that is published to the multiplexer first and then
   queued for persistence.
4. **Finalize**: drain the log writer, persist status / duration / cost /
   metadata, store a new session token if one was issued, publish the
   terminal event, release the actor, and stop the unit's tool processes
   if it was disabled meanwhile.

Failures of any kind end in a ``failed`` execution with an error message and
a final error log entry.  Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from autocrew.agent_runtime.errors import (
    ActorBusyError,
    MissingCredentialsError,
    ProviderError,
    ToolBridgeError,
    ToolSpawnError,
    UnitDisabledError,
)
from autocrew.agent_runtime.execution.prompt import render_system_prompt, render_user_prompt
from autocrew.agent_runtime.execution.writer import LogWriter
from autocrew.agent_runtime.models.common import utcnow
from autocrew.agent_runtime.models.enums import ExecutionStatus, LogLevel, TriggerType, UnitStatus
from autocrew.agent_runtime.models.events import StreamEvent
from autocrew.agent_runtime.models.execution import Execution, LogEntry
from autocrew.agent_runtime.providers.base import (
    AssistantText,
    ProviderRequest,
    RunResult,
    SessionStarted,
    ToolBinding,
    ToolInvocation,
)

if TYPE_CHECKING:
    from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem
    from autocrew.agent_runtime.providers.base import AgentProvider, ProviderEvent
    from autocrew.agent_runtime.registry import ActorRegistry
    from autocrew.agent_runtime.store.base import DispatchStore
    from autocrew.agent_runtime.streaming.multiplexer import LogStreamMultiplexer
    from autocrew.agent_runtime.tools.bridge import ToolEndpoint, ToolProcessBridge
    from autocrew.agent_runtime.tools.process import ToolDescriptor

logger = logging.getLogger(__name__)

_TOOL_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")
_FILE_ARGUMENT_KEYS = ("path", "file_path", "filename", "file")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class ExecutionResult:
    """Outcome of a settled execution."""

    execution_id: str
    status: ExecutionStatus
    output: str | None = None
    error: str | None = None
    cost: float | None = None
    duration_ms: int = 0
    session_token: str | None = None


@dataclass
class ExecutionHandle:
    """An admitted execution running in the background."""

    execution: Execution
    task: asyncio.Task[ExecutionResult]

    @property
    def execution_id(self) -> str:
        return self.execution.execution_id

    async def wait(self) -> ExecutionResult:
        """Wait for the execution to settle.  Cancelling the waiter does not cancel the run."""
        return await asyncio.shield(self.task)


@dataclass
class _RunState:
    """Mutable bookkeeping for one execution."""

    execution: Execution
    unit: UnitOfWork
    writer: LogWriter
    session_token: str | None
    seq: int = 0
    model: str | None = None
    turns: int = 0
    tools_invoked: list[str] = field(default_factory=list)
    files_touched: set[str] = field(default_factory=set)
    output: str | None = None
    cost: float | None = None

    def metadata(self) -> dict[str, Any]:
        return {
            "turns": self.turns,
            "tools_invoked": self.tools_invoked,
            "files_touched": sorted(self.files_touched),
            "model": self.model,
            "unit_name": self.unit.name,
        }


def _tool_binding_name(server_type: str, tool_name: str) -> str:
    return _TOOL_NAME_RE.sub("_", f"{server_type}__{tool_name}")[:64]


def _files_from_arguments(arguments: dict[str, Any]) -> list[str]:
    return [str(arguments[k]) for k in _FILE_ARGUMENT_KEYS if isinstance(arguments.get(k), str)]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ExecutionCoordinator:
    """Single entry point for running units of work.

    Instantiated once during app lifespan and shared by the time scheduler,
    the task dispatcher, and the manual trigger endpoint.
    """

    def __init__(
        self,
        store: DispatchStore,
        registry: ActorRegistry,
        multiplexer: LogStreamMultiplexer,
        provider: AgentProvider,
        bridge: ToolProcessBridge | None = None,
        *,
        log_queue_size: int = 1000,
        default_max_turns: int = 25,
        execution_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._multiplexer = multiplexer
        self._provider = provider
        self._bridge = bridge
        self._log_queue_size = log_queue_size
        self._default_max_turns = default_max_turns
        self._execution_timeout = execution_timeout
        self._writers: dict[str, LogWriter] = {}
        self._tasks: set[asyncio.Task[ExecutionResult]] = set()

    # -- Admission -------------------------------------------------------------

    async def start(
        self,
        unit: UnitOfWork,
        trigger_type: TriggerType,
        work_item: WorkItem | None = None,
    ) -> ExecutionHandle | None:
        """Admit and launch an execution.  Returns ``None`` if the actor is busy.

        Raises ``ShuttingDownError`` once shutdown has begun.
        """
        actor_id = unit.actor_id
        if not self._registry.try_acquire(actor_id, holder=trigger_type.value):
            logger.info("Unit %s is busy; %s trigger skipped", actor_id, trigger_type)
            return None

        try:
            if await self._store.has_running_execution(unit.unit_id):
                logger.warning("Unit %s has an in-flight execution in storage; %s trigger skipped", actor_id, trigger_type)
                self._registry.release(actor_id)
                return None
            execution = await self._store.create_execution(
                Execution(
                    unit_id=unit.unit_id,
                    owner_id=unit.owner_id,
                    work_item_id=work_item.work_item_id if work_item is not None else None,
                    status=ExecutionStatus.PENDING,
                    trigger_type=trigger_type,
                )
            )
        except BaseException:
            self._registry.release(actor_id)
            raise

        task = asyncio.create_task(
            self._run(unit, execution, work_item),
            name=f"execution-{execution.execution_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "Execution %s admitted (unit=%s, trigger=%s, work_item=%s)",
            execution.execution_id,
            unit.unit_id,
            trigger_type,
            execution.work_item_id,
        )
        return ExecutionHandle(execution=execution, task=task)

    async def run(
        self,
        unit: UnitOfWork,
        trigger_type: TriggerType,
        work_item: WorkItem | None = None,
    ) -> ExecutionResult | None:
        """Start and wait.  Returns ``None`` if the actor is busy."""
        handle = await self.start(unit, trigger_type, work_item)
        if handle is None:
            return None
        return await handle.wait()

    async def trigger_now(self, unit_id: str, trigger_type: TriggerType = TriggerType.MANUAL) -> ExecutionHandle:
        """Explicit trigger (API).  Raises instead of returning ``None``.

        Raises ``UnitNotFoundError``, ``UnitDisabledError`` or ``ActorBusyError``.
        """
        unit = await self._store.get_unit(unit_id)
        if unit.status != UnitStatus.ACTIVE:
            msg = f"Unit '{unit_id}' is {unit.status}"
            raise UnitDisabledError(msg)
        handle = await self.start(unit, trigger_type)
        if handle is None:
            msg = f"Unit '{unit_id}' already has an execution in flight"
            raise ActorBusyError(msg)
        return handle

    # -- Run -------------------------------------------------------------------

    async def _run(self, unit: UnitOfWork, execution: Execution, work_item: WorkItem | None) -> ExecutionResult:
        execution_id = execution.execution_id
        writer = LogWriter(self._store, execution_id, maxsize=self._log_queue_size)
        writer.start()
        self._writers[execution_id] = writer
        run = _RunState(execution=execution, unit=unit, writer=writer, session_token=unit.session_token)

        started = time.monotonic()
        status = ExecutionStatus.FAILED
        error: str | None = None
        duration_ms = 0
        try:
            try:
                await self._store.update_execution(execution_id, status=ExecutionStatus.RUNNING, started_at=utcnow())
                await self._log(run, LogLevel.INFO, "started", f"Execution started ({execution.trigger_type})")
                async with asyncio.timeout(self._execution_timeout):
                    await self._execute(run, work_item)
                status = ExecutionStatus.COMPLETED
            except TimeoutError as exc:
                if self._execution_timeout is not None:
                    error = f"Execution timed out after {self._execution_timeout}s"
                else:
                    error = str(exc) or "TimeoutError"
                logger.warning("Execution %s: %s", execution_id, error)
            except asyncio.CancelledError:
                error = "Execution cancelled"
                raise
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.exception("Execution %s failed", execution_id)
            finally:
                if error is not None:
                    await self._log(run, LogLevel.ERROR, "failed", error)
                duration_ms = int((time.monotonic() - started) * 1000)
                await self._finalize(run, status, error, duration_ms)
        finally:
            self._writers.pop(execution_id, None)
            self._multiplexer.publish_completion(execution_id, unit.owner_id, status)
            self._registry.release(unit.actor_id)
            await self._stop_tools_if_inactive(unit)

        logger.info("Execution %s %s in %dms", execution_id, status, duration_ms)
        return ExecutionResult(
            execution_id=execution_id,
            status=status,
            output=run.output,
            error=error,
            cost=run.cost,
            duration_ms=duration_ms,
            session_token=run.session_token,
        )

    async def _execute(self, run: _RunState, work_item: WorkItem | None) -> None:
        unit = run.unit
        trigger_type = run.execution.trigger_type
        tools = await self._resolve_tools(run)
        request = ProviderRequest(
            execution_id=run.execution.execution_id,
            unit_id=unit.unit_id,
            system_prompt=render_system_prompt(unit, trigger_type),
            prompt=render_user_prompt(unit, trigger_type, work_item),
            tools=tools,
            session_token=unit.session_token,
            max_turns=unit.max_turns or self._default_max_turns,
        )

        result: RunResult | None = None
        async for event in self._provider.stream(request):
            if isinstance(event, RunResult):
                result = event
                await self._on_result(run, event)
            else:
                await self._on_event(run, event)

        if result is None:
            msg = f"Provider '{self._provider.name}' finished without a result"
            raise ProviderError(msg)
        if result.is_error:
            raise ProviderError(result.error or f"Provider '{self._provider.name}' reported an error")

    async def _finalize(self, run: _RunState, status: ExecutionStatus, error: str | None, duration_ms: int) -> None:
        await run.writer.close()
        execution_id = run.execution.execution_id
        try:
            await self._store.update_execution(
                execution_id,
                status=status,
                completed_at=utcnow(),
                duration_ms=duration_ms,
                cost=run.cost,
                error=error,
                metadata=run.metadata(),
            )
            if status == ExecutionStatus.COMPLETED and run.session_token != run.unit.session_token:
                await self._store.set_session_token(run.unit.unit_id, run.session_token)
        except Exception:
            logger.exception("Failed to persist final state of execution %s", execution_id)

    # -- Events ----------------------------------------------------------------

    async def _on_event(self, run: _RunState, event: ProviderEvent) -> None:
        if isinstance(event, SessionStarted):
            run.model = event.model
            if event.session_token:
                run.session_token = event.session_token
            resumed = run.unit.session_token is not None
            await self._log(
                run,
                LogLevel.INFO,
                "session",
                f"{'Resumed' if resumed else 'Started'} session (model={event.model or 'unknown'})",
                resumed=resumed,
            )
        elif isinstance(event, AssistantText):
            await self._log(run, LogLevel.INFO, "thinking", event.text)
        elif isinstance(event, ToolInvocation):
            run.turns = max(run.turns, event.turn)
            run.tools_invoked.append(event.tool_name)
            run.files_touched.update(_files_from_arguments(event.arguments))
            await self._log(
                run,
                LogLevel.INFO,
                "tool_use",
                f"Using tool: {event.tool_name}",
                tool=event.tool_name,
                turn=event.turn,
            )

    async def _on_result(self, run: _RunState, result: RunResult) -> None:
        run.output = result.output
        run.cost = result.cost
        run.turns = max(run.turns, result.num_turns)
        if result.session_token:
            run.session_token = result.session_token
        if result.is_error:
            return
        await self._log(
            run,
            LogLevel.INFO,
            "completed",
            f"Completed in {run.turns} turns",
            cost=result.cost,
            provider_duration_ms=result.duration_ms,
        )

    async def _log(self, run: _RunState, level: LogLevel, stage: str, message: str, **metadata: Any) -> None:
        """Publish first, then queue for persistence."""
        run.seq += 1
        entry = LogEntry(
            execution_id=run.execution.execution_id,
            seq=run.seq,
            level=level,
            stage=stage,
            message=message,
            metadata=metadata,
        )
        self._multiplexer.publish(run.execution.execution_id, run.unit.owner_id, StreamEvent.log(entry))
        await run.writer.submit(entry)

    # -- Tools -----------------------------------------------------------------

    async def _resolve_tools(self, run: _RunState) -> list[ToolBinding]:
        unit = run.unit
        if not unit.tool_servers:
            return []
        if self._bridge is None:
            msg = "Unit declares tool servers but no tool bridge is configured"
            raise ToolSpawnError(msg)

        bindings: list[ToolBinding] = []
        for server_type in unit.tool_servers:
            try:
                endpoint = await self._bridge.endpoint(unit.actor_id, unit.owner_id, server_type)
            except MissingCredentialsError as exc:
                await self._log(run, LogLevel.WARNING, "tools", f"Skipping {server_type}: {exc}", server_type=server_type)
                continue
            await self._log(
                run,
                LogLevel.INFO,
                "tools",
                f"Connected to {server_type} ({len(endpoint.tools)} tools)",
                server_type=server_type,
                tools=[t.name for t in endpoint.tools],
            )
            bindings.extend(self._bind(run, endpoint, tool) for tool in endpoint.tools)
        return bindings

    def _bind(self, run: _RunState, endpoint: ToolEndpoint, tool: ToolDescriptor) -> ToolBinding:
        name = _tool_binding_name(endpoint.server_type, tool.name)

        async def invoke(arguments: dict[str, Any]) -> str:
            try:
                result = await endpoint.call(tool.name, arguments)
            except ToolBridgeError as exc:
                await self._log(run, LogLevel.ERROR, "tool_error", f"{name} failed: {exc}", tool=name)
                return f"Tool call failed: {exc}"
            await self._log(
                run,
                LogLevel.WARNING if result.is_error else LogLevel.INFO,
                "tool_result",
                f"{name} returned {len(result.content)} characters",
                tool=name,
                is_error=result.is_error,
            )
            return result.content

        return ToolBinding(name=name, description=tool.description, input_schema=tool.input_schema, invoke=invoke)

    async def _stop_tools_if_inactive(self, unit: UnitOfWork) -> None:
        """Stop the unit's tool processes if it was disabled or paused while running.

        Runs after the actor is released, so a concurrent ``disable_unit`` either
        saw the actor busy (and left the processes to us) or stopped them itself.
        """
        if self._bridge is None or not unit.tool_servers:
            return
        try:
            current = await self._store.get_unit(unit.unit_id)
            if current.status == UnitStatus.ACTIVE or self._registry.is_busy(unit.actor_id):
                return
            stopped = await self._bridge.shutdown_actor(unit.actor_id)
        except Exception:
            logger.exception("Failed to stop tool processes of unit %s", unit.unit_id)
            return
        if stopped:
            logger.info("Unit %s is %s; stopped %d tool processes", unit.unit_id, current.status, stopped)

    # -- Introspection ---------------------------------------------------------

    def pending_logs(self, execution_id: str) -> list[LogEntry]:
        """Entries of a live execution that are not yet persisted."""
        writer = self._writers.get(execution_id)
        return writer.unpersisted() if writer is not None else []

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    # -- Lifecycle -------------------------------------------------------------

    async def recover_orphans(self) -> int:
        """Fail executions a previous process left in flight.  Call once at startup."""
        return await self._store.recover_orphaned_executions(utcnow())

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for every running execution to settle."""
        tasks = list(self._tasks)
        if not tasks:
            return True
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    def cancel_all(self) -> int:
        """Cancel every running execution (forced shutdown).  Each still finalizes as failed."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)
