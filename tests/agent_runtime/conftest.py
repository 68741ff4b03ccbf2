"""Shared fixtures for agent-runtime tests.

Everything runs against the in-memory store and the echo provider, so no
database, Docker or API key is needed.  Integration tests that want
PostgreSQL use the fixtures from the root conftest instead.
"""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from autocrew.agent_runtime.app import app
from autocrew.agent_runtime.context import Services, build_services
from autocrew.agent_runtime.models.enums import TriggerMode
from autocrew.agent_runtime.models.unit import UnitOfWork
from autocrew.agent_runtime.settings import AutocrewSettings
from autocrew.agent_runtime.store.local import LocalStateStore
from autocrew.agent_runtime.store.memory import MemoryDispatchStore
from autocrew.agent_runtime.tools.catalog import ToolServerSpec

FIXTURES = Path(__file__).parent.parent / "fixtures"
JSONRPC_SERVER = FIXTURES / "jsonrpc_server.py"


def _fake_server_spec(mode: str = "normal", **env: str) -> ToolServerSpec:
    return ToolServerSpec(
        command=sys.executable,
        args=[str(JSONRPC_SERVER)],
        env={"FAKE_SERVER_MODE": mode, **env},
    )


def _make_unit(**overrides) -> UnitOfWork:
    defaults = {
        "owner_id": "owner-1",
        "name": "Release Manager",
        "trigger_mode": TriggerMode.ON_DEMAND,
        "goal": "Check the release checklist.",
    }
    defaults.update(overrides)
    return UnitOfWork(**defaults)


@pytest.fixture
def settings(tmp_path) -> AutocrewSettings:
    return AutocrewSettings(
        _env_file=None,
        data_root=str(tmp_path),
        enable_scheduler=False,
        enable_dispatcher=False,
        tick_jitter=0,
    )


@pytest.fixture
def store() -> MemoryDispatchStore:
    return MemoryDispatchStore()


@pytest.fixture
async def services(settings: AutocrewSettings, store: MemoryDispatchStore, tmp_path) -> AsyncIterator[Services]:
    """Fully wired runtime with nothing ticking.  Tests drive ticks by hand."""
    services = build_services(settings, store, state_store=LocalStateStore(tmp_path))
    yield services
    await services.coordinator.wait_idle(timeout=5)
    await services.dispatcher.wait_settled(timeout=5)
    await services.bridge.shutdown()


@pytest.fixture
async def client(services: Services) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with test services.

    The app lifespan does NOT run under ``ASGITransport``, so the service
    container is set on ``app.state`` directly.
    """
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.services = None


@pytest.fixture
def make_unit():
    """Factory for ``UnitOfWork`` models with sensible defaults."""
    return _make_unit


@pytest.fixture
def fake_server_spec():
    """Factory for launch specs of the fake JSON-RPC tool server in ``tests/fixtures``."""
    return _fake_server_spec
