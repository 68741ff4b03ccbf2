"""Tool process bridge tests against a real subprocess (tests/fixtures/jsonrpc_server.py)."""

from __future__ import annotations

import asyncio

import pytest

from autocrew.agent_runtime.errors import MissingCredentialsError, ToolCallError, ToolProcessExited, ToolSpawnError
from autocrew.agent_runtime.tools.bridge import ToolProcessBridge
from autocrew.agent_runtime.tools.catalog import ToolServerCatalog, ToolServerSpec
from autocrew.agent_runtime.tools.credentials import InMemoryCredentialStore


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
async def make_bridge(fake_server_spec, credentials):
    bridges: list[ToolProcessBridge] = []

    def _make(servers: dict[str, ToolServerSpec] | None = None, *, request_timeout: float = 5.0) -> ToolProcessBridge:
        catalog = ToolServerCatalog(servers or {"fake": fake_server_spec()})
        bridge = ToolProcessBridge(catalog, credentials, request_timeout=request_timeout, shutdown_timeout=2.0)
        bridges.append(bridge)
        return bridge

    yield _make
    for bridge in bridges:
        await bridge.shutdown()


@pytest.fixture
def bridge(make_bridge) -> ToolProcessBridge:
    return make_bridge()


# ---------------------------------------------------------------------------
# Handshake and pooling
# ---------------------------------------------------------------------------


async def test_endpoint_lists_tools(bridge: ToolProcessBridge) -> None:
    endpoint = await bridge.endpoint("unit-1", "owner-1", "fake")
    names = {t.name for t in endpoint.tools}
    assert {"echo", "sleep", "hang", "crash"} <= names
    echo = next(t for t in endpoint.tools if t.name == "echo")
    assert echo.description == "Echo text back"
    assert echo.input_schema["type"] == "object"


async def test_call_tool_returns_text(bridge: ToolProcessBridge) -> None:
    result = await bridge.call_tool("unit-1", "owner-1", "fake", "echo", {"text": "hello"})
    assert result.content == "hello"
    assert result.is_error is False


async def test_process_reused_per_actor_and_server(bridge: ToolProcessBridge) -> None:
    first = await bridge.call_tool("unit-1", "owner-1", "fake", "pid", {})
    second = await bridge.call_tool("unit-1", "owner-1", "fake", "pid", {})
    other = await bridge.call_tool("unit-2", "owner-1", "fake", "pid", {})

    assert first.content == second.content
    assert other.content != first.content
    assert bridge.process_count == 2


async def test_concurrent_first_requests_spawn_once(bridge: ToolProcessBridge) -> None:
    results = await asyncio.gather(*(bridge.call_tool("unit-1", "owner-1", "fake", "pid", {}) for _ in range(5)))
    assert len({r.content for r in results}) == 1
    assert bridge.process_count == 1


async def test_responses_correlated_out_of_order(bridge: ToolProcessBridge) -> None:
    endpoint = await bridge.endpoint("unit-1", "owner-1", "fake")
    slow = asyncio.create_task(endpoint.call("sleep", {"seconds": 0.5}))
    await asyncio.sleep(0.05)
    fast = await endpoint.call("echo", {"text": "fast"})

    assert fast.content == "fast"
    assert not slow.done()
    assert (await slow).content == "slept"


async def test_error_result_and_error_response(bridge: ToolProcessBridge) -> None:
    result = await bridge.call_tool("unit-1", "owner-1", "fake", "fail", {})
    assert result.is_error is True
    assert result.content == "something broke"

    with pytest.raises(ToolCallError, match="Unknown tool"):
        await bridge.call_tool("unit-1", "owner-1", "fake", "nope", {})


# ---------------------------------------------------------------------------
# Timeouts and crashes
# ---------------------------------------------------------------------------


async def test_hung_request_times_out_and_process_survives(make_bridge) -> None:
    bridge = make_bridge(request_timeout=0.5)
    with pytest.raises(ToolCallError, match="timed out"):
        await bridge.call_tool("unit-1", "owner-1", "fake", "hang", {})

    process = bridge.process_for("unit-1", "fake")
    assert process is not None
    assert process.alive
    assert process.pending_count == 0

    result = await bridge.call_tool("unit-1", "owner-1", "fake", "echo", {"text": "still here"})
    assert result.content == "still here"


async def test_per_call_timeout_overrides_default(bridge: ToolProcessBridge) -> None:
    with pytest.raises(ToolCallError, match="timed out after 0.2s"):
        await bridge.call_tool("unit-1", "owner-1", "fake", "hang", {}, timeout=0.2)


async def test_crash_fails_pending_and_respawns(bridge: ToolProcessBridge) -> None:
    before = await bridge.call_tool("unit-1", "owner-1", "fake", "pid", {})
    endpoint = await bridge.endpoint("unit-1", "owner-1", "fake")

    hanging = asyncio.create_task(endpoint.call("hang", {}))
    await asyncio.sleep(0.1)
    with pytest.raises(ToolProcessExited):
        await endpoint.call("crash", {})
    with pytest.raises(ToolProcessExited):
        await hanging

    assert bridge.process_for("unit-1", "fake") is None

    after = await endpoint.call("pid", {})
    assert after.content != before.content
    assert bridge.process_count == 1


async def test_handshake_timeout_is_spawn_error(make_bridge, fake_server_spec) -> None:
    bridge = make_bridge({"silent": fake_server_spec("no_handshake")}, request_timeout=0.5)
    with pytest.raises(ToolSpawnError, match="handshake"):
        await bridge.endpoint("unit-1", "owner-1", "silent")
    assert bridge.process_count == 0


async def test_server_exiting_on_start_is_spawn_error(make_bridge, fake_server_spec) -> None:
    bridge = make_bridge({"dead": fake_server_spec("exit_on_start")})
    with pytest.raises(ToolSpawnError):
        await bridge.endpoint("unit-1", "owner-1", "dead")


async def test_unknown_server_type(bridge: ToolProcessBridge) -> None:
    with pytest.raises(ToolSpawnError, match="Unknown tool server type"):
        await bridge.endpoint("unit-1", "owner-1", "missing")


async def test_missing_command_is_spawn_error(make_bridge) -> None:
    bridge = make_bridge({"broken": ToolServerSpec(command="/nonexistent/autocrew-tool-server")})
    with pytest.raises(ToolSpawnError, match="Failed to start"):
        await bridge.endpoint("unit-1", "owner-1", "broken")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def _secured_spec(fake_server_spec) -> ToolServerSpec:
    spec = fake_server_spec()
    return spec.model_copy(update={"credential_env": {"FAKE_ACCESS_TOKEN": "access_token"}})


async def test_credentials_passed_via_environment(make_bridge, fake_server_spec, credentials) -> None:
    credentials.set("owner-1", "github", {"access_token": "s3cret"})
    bridge = make_bridge({"github": _secured_spec(fake_server_spec)})
    result = await bridge.call_tool("unit-1", "owner-1", "github", "env", {"name": "FAKE_ACCESS_TOKEN"})
    assert result.content == "s3cret"
    process = bridge.process_for("unit-1", "github")
    assert process is not None
    assert "s3cret" not in process.spec.args


async def test_missing_credentials(make_bridge, fake_server_spec) -> None:
    bridge = make_bridge({"github": _secured_spec(fake_server_spec)})
    with pytest.raises(MissingCredentialsError):
        await bridge.endpoint("unit-1", "owner-1", "github")
    assert bridge.process_count == 0


async def test_incomplete_credentials(make_bridge, fake_server_spec, credentials) -> None:
    credentials.set("owner-1", "github", {"refresh_token": "x"})
    bridge = make_bridge({"github": _secured_spec(fake_server_spec)})
    with pytest.raises(MissingCredentialsError, match="access_token"):
        await bridge.endpoint("unit-1", "owner-1", "github")


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


async def test_shutdown_actor_only_stops_that_actor(bridge: ToolProcessBridge) -> None:
    await bridge.endpoint("unit-1", "owner-1", "fake")
    await bridge.endpoint("unit-2", "owner-1", "fake")

    assert await bridge.shutdown_actor("unit-1") == 1
    assert bridge.process_for("unit-1", "fake") is None
    assert bridge.process_for("unit-2", "fake") is not None


async def test_shutdown_refuses_new_processes(make_bridge) -> None:
    bridge = make_bridge()
    process = await bridge.acquire("unit-1", "owner-1", "fake")
    await bridge.shutdown()

    assert not process.alive
    assert bridge.process_count == 0
    with pytest.raises(ToolSpawnError, match="shut down"):
        await bridge.acquire("unit-1", "owner-1", "fake")
