"""Runtime service container.

Every long-lived component is built once during app lifespan (or by the
``tick`` CLI command) and wired together here.  Route handlers reach them
through ``deps.py``; the tick loops hold direct references.

Design note: the coordinator, the time scheduler and the task dispatcher all
share one ``ActorRegistry``.  That registry is the only busy set in the
process, so per-actor mutual exclusion holds across every trigger path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from autocrew.agent_runtime.dispatch.dispatcher import TaskDispatcher
from autocrew.agent_runtime.dispatch.scheduler import TimeScheduler
from autocrew.agent_runtime.dispatch.ticks import create_tick_scheduler
from autocrew.agent_runtime.execution.coordinator import ExecutionCoordinator
from autocrew.agent_runtime.providers import create_provider
from autocrew.agent_runtime.registry import ActorRegistry
from autocrew.agent_runtime.store.local import LocalStateStore
from autocrew.agent_runtime.streaming.multiplexer import LogStreamMultiplexer
from autocrew.agent_runtime.tools.bridge import ToolProcessBridge
from autocrew.agent_runtime.tools.catalog import ToolServerCatalog
from autocrew.agent_runtime.tools.credentials import CredentialStore, InMemoryCredentialStore

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from autocrew.agent_runtime.providers.base import AgentProvider
    from autocrew.agent_runtime.settings import AutocrewSettings
    from autocrew.agent_runtime.store.base import DispatchStore, StateStore


@dataclass
class Services:
    """Shared singletons for one runtime process."""

    settings: AutocrewSettings
    store: DispatchStore
    state_store: StateStore
    registry: ActorRegistry
    multiplexer: LogStreamMultiplexer
    bridge: ToolProcessBridge
    coordinator: ExecutionCoordinator
    time_scheduler: TimeScheduler
    dispatcher: TaskDispatcher
    tick_scheduler: AsyncIOScheduler = field(default_factory=create_tick_scheduler)

    # -- Tick loops ------------------------------------------------------------

    def start_ticks(self) -> None:
        """Register the enabled tick loops and start the APScheduler."""
        settings = self.settings
        if settings.enable_scheduler:
            self.time_scheduler.start(
                self.tick_scheduler,
                interval=settings.scheduler_interval,
                jitter=settings.tick_jitter,
            )
        if settings.enable_dispatcher:
            self.dispatcher.start(
                self.tick_scheduler,
                interval=settings.dispatcher_interval,
                jitter=settings.tick_jitter,
            )
        if not self.tick_scheduler.running:
            self.tick_scheduler.start()

    def stop_ticks(self) -> None:
        """Stop both tick loops.  A tick already in progress runs to completion."""
        self.time_scheduler.stop()
        self.dispatcher.stop()
        if self.tick_scheduler.running:
            self.tick_scheduler.shutdown(wait=False)


def build_services(
    settings: AutocrewSettings,
    store: DispatchStore,
    *,
    state_store: StateStore | None = None,
    provider: AgentProvider | None = None,
    credentials: CredentialStore | None = None,
) -> Services:
    """Wire every runtime component from *settings*.

    *state_store*, *provider* and *credentials* can be injected (tests);
    otherwise they are built from configuration.
    """
    state_store = state_store or LocalStateStore(settings.data_root)
    provider = provider or create_provider(settings, state_store)
    registry = ActorRegistry()
    multiplexer = LogStreamMultiplexer()
    bridge = ToolProcessBridge(
        ToolServerCatalog(settings.tool_servers),
        credentials or InMemoryCredentialStore(),
        request_timeout=settings.tool_call_timeout,
        shutdown_timeout=settings.tool_shutdown_timeout,
    )
    coordinator = ExecutionCoordinator(
        store,
        registry,
        multiplexer,
        provider,
        bridge,
        log_queue_size=settings.log_queue_size,
        default_max_turns=settings.default_max_turns,
        execution_timeout=settings.execution_timeout,
    )
    return Services(
        settings=settings,
        store=store,
        state_store=state_store,
        registry=registry,
        multiplexer=multiplexer,
        bridge=bridge,
        coordinator=coordinator,
        time_scheduler=TimeScheduler(store, coordinator),
        dispatcher=TaskDispatcher(store, coordinator, registry),
    )
