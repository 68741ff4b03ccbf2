from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.routing import APIRouter
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine
from sse_starlette.sse import AppStatus

from autocrew.agent_runtime.context import build_services
from autocrew.agent_runtime.db.engine import create_engine, create_session_factory
from autocrew.agent_runtime.deps import Runtime
from autocrew.agent_runtime.log import setup_logging
from autocrew.agent_runtime.models.api import HealthResponse
from autocrew.agent_runtime.settings import AutocrewSettings, get_settings
from autocrew.agent_runtime.store.base import DispatchStore
from autocrew.agent_runtime.store.memory import MemoryDispatchStore
from autocrew.agent_runtime.store.sql import SqlDispatchStore


def create_store(settings: AutocrewSettings) -> tuple[DispatchStore, AsyncEngine | None]:
    """Create the dispatch store backend based on configuration."""
    if not settings.database_url:
        logger.warning("AUTOCREW_DATABASE_URL not set -- using the in-memory store (state is lost on restart)")
        return MemoryDispatchStore(), None
    engine = create_engine(settings.database_url)
    logger.info("PostgreSQL: connected (pool_size=10, max_overflow=10)")
    return SqlDispatchStore(create_session_factory(engine)), engine


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Agent Runtime starting (host={}, port={})", settings.host, settings.port)
    logger.info("Data root: {} (provider={})", settings.data_root, settings.provider)

    store, engine = create_store(settings)
    services = build_services(settings, store)
    _app.state.services = services

    # Startup recovery: anything still in flight belongs to a dead process.
    recovered = await services.coordinator.recover_orphans()
    if recovered > 0:
        logger.info("Startup recovery: {} orphaned executions marked as failed", recovered)

    # -- SSE -------------------------------------------------------------------
    # Let SSE streams complete naturally on shutdown instead of being
    # terminated immediately, so followers receive their terminal event.
    AppStatus.disable_automatic_graceful_drain()

    # -- Tick loops ------------------------------------------------------------
    services.start_ticks()

    yield

    # -- Shutdown --------------------------------------------------------------
    registry = services.registry
    logger.info("Agent Runtime shutting down (in_flight={})", registry.active_count)

    # 1. Stop ticking, then refuse new executions from any path.
    services.stop_ticks()
    registry.begin_shutdown()

    # 2. Wait for in-flight executions to finish naturally.
    if registry.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} executions to finish (timeout={}s)...", registry.active_count, timeout)
        drained = await registry.wait_until_drained(timeout=timeout)
        if not drained:
            # Last resort: cancel; each cancelled run still finalizes as failed.
            cancelled = services.coordinator.cancel_all()
            logger.warning("Cancelled {} executions after timeout", cancelled)
            await services.coordinator.wait_idle(timeout=5.0)
    await services.dispatcher.wait_settled(timeout=5.0)

    # 3. Close streams.  Must happen AFTER the drain so that followers
    #    receive the terminal event before their connection closes.
    services.multiplexer.close_all()
    AppStatus.should_exit = True
    logger.info("SSE: signalled streams to close")

    # 4. Stop tool server processes.
    await services.bridge.shutdown()

    # Dispose DB engine (closes all pooled connections).
    if engine is not None:
        await engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Autocrew Agent Runtime", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all backend endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health", response_model=HealthResponse)
async def health(services: Runtime) -> HealthResponse:
    in_flight = services.registry.active_ids()
    return HealthResponse(
        status="shutting_down" if services.registry.is_shutting_down else "ok",
        in_flight=len(in_flight),
        in_flight_actors=in_flight,
        scheduler_last_tick_at=services.time_scheduler.last_tick_at,
        dispatcher_last_tick_at=services.dispatcher.last_tick_at,
        execution_subscribers=services.multiplexer.execution_subscribers,
        owner_subscribers=services.multiplexer.owner_subscribers,
        tool_processes=services.bridge.process_count,
    )


# -- Resource routers --------------------------------------------------------
from autocrew.agent_runtime.routers.executions import router as executions_router  # noqa: E402
from autocrew.agent_runtime.routers.owners import router as owners_router  # noqa: E402
from autocrew.agent_runtime.routers.units import router as units_router  # noqa: E402
from autocrew.agent_runtime.routers.work_items import router as work_items_router  # noqa: E402

api.include_router(units_router)
api.include_router(work_items_router)
api.include_router(executions_router)
api.include_router(owners_router)

app.include_router(api)
