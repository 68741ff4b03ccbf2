"""HTTP API tests against the in-memory runtime."""

from __future__ import annotations

from httpx import AsyncClient

from autocrew.agent_runtime.app import app
from autocrew.agent_runtime.context import Services
from autocrew.agent_runtime.models.enums import TriggerMode, UnitStatus

UNIT_BODY = {
    "owner_id": "owner-1",
    "name": "Release Manager",
    "goal": "Check the release checklist.",
}


async def _create_unit(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/units/create", json={**UNIT_BODY, **overrides})
    assert response.status_code == 201
    return response.json()


async def _create_item(client: AsyncClient, **overrides) -> dict:
    body = {"owner_id": "owner-1", "title": "Cut the 2.4 release", **overrides}
    response = await client.post("/api/work-items/create", json=body)
    assert response.status_code == 201
    return response.json()


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


async def test_health(client: AsyncClient, services: Services) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["in_flight"] == 0
    assert body["tool_processes"] == 0

    services.registry.begin_shutdown()
    assert (await client.get("/api/health")).json()["status"] == "shutting_down"


async def test_services_missing_is_503(client: AsyncClient) -> None:
    app.state.services = None
    response = await client.get("/api/units/list")
    assert response.status_code == 503


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


async def test_unit_create_get_list(client: AsyncClient) -> None:
    unit = await _create_unit(client, unit_id="release-bot", trigger_mode="scheduled", frequency="daily")
    assert unit["unit_id"] == "release-bot"
    assert unit["status"] == UnitStatus.ACTIVE
    assert unit["trigger_mode"] == TriggerMode.SCHEDULED

    duplicate = await client.post("/api/units/create", json={**UNIT_BODY, "unit_id": "release-bot"})
    assert duplicate.status_code == 409

    fetched = await client.get("/api/units/release-bot/get")
    assert fetched.status_code == 200
    assert fetched.json()["frequency"] == "daily"

    await _create_unit(client, owner_id="owner-2")
    listed = await client.get("/api/units/list", params={"owner_id": "owner-1"})
    assert [u["unit_id"] for u in listed.json()] == ["release-bot"]

    assert (await client.get("/api/units/missing/get")).status_code == 404


async def test_unit_update_and_disable(client: AsyncClient) -> None:
    unit = await _create_unit(client, role="You are terse.")
    unit_id = unit["unit_id"]

    response = await client.post(f"/api/units/{unit_id}/update", json={"goal": "Ship 2.4."})
    assert response.status_code == 200
    updated = response.json()
    assert updated["goal"] == "Ship 2.4."
    assert updated["role"] == "You are terse."

    response = await client.post(f"/api/units/{unit_id}/disable")
    assert response.status_code == 200
    assert response.json()["status"] == UnitStatus.DISABLED

    assert (await client.post("/api/units/missing/update", json={"goal": "x"})).status_code == 404
    assert (await client.post("/api/units/missing/disable")).status_code == 404


async def test_trigger_unit(client: AsyncClient, services: Services) -> None:
    unit = await _create_unit(client)
    response = await client.post(f"/api/units/{unit['unit_id']}/trigger")
    assert response.status_code == 202
    body = response.json()
    assert body["unit_id"] == unit["unit_id"]
    assert body["status"] == "pending"

    assert await services.coordinator.wait_idle(timeout=5)
    execution = (await client.get(f"/api/executions/{body['execution_id']}/get")).json()
    assert execution["status"] == "completed"
    assert execution["trigger_type"] == "manual"


async def test_trigger_accepts_only_manual(client: AsyncClient, services: Services) -> None:
    unit = await _create_unit(client)

    for trigger_type in ("task_driven", "scheduled"):
        response = await client.post(f"/api/units/{unit['unit_id']}/trigger", json={"trigger_type": trigger_type})
        assert response.status_code == 422
    assert await services.store.list_executions() == []

    response = await client.post(f"/api/units/{unit['unit_id']}/trigger", json={"trigger_type": "manual"})
    assert response.status_code == 202
    assert await services.coordinator.wait_idle(timeout=5)


async def test_trigger_conflicts(client: AsyncClient, services: Services) -> None:
    busy = await _create_unit(client)
    disabled = await _create_unit(client)
    await client.post(f"/api/units/{disabled['unit_id']}/disable")
    services.registry.try_acquire(busy["unit_id"], holder="scheduled")

    assert (await client.post(f"/api/units/{busy['unit_id']}/trigger")).status_code == 409
    assert (await client.post(f"/api/units/{disabled['unit_id']}/trigger")).status_code == 409
    assert (await client.post("/api/units/missing/trigger")).status_code == 404

    services.registry.release(busy["unit_id"])
    services.registry.begin_shutdown()
    assert (await client.post(f"/api/units/{busy['unit_id']}/trigger")).status_code == 503


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


async def test_work_item_lifecycle(client: AsyncClient, services: Services) -> None:
    unit = await _create_unit(client)
    item = await _create_item(client, priority="high")
    assert item["status"] == "pending"
    item_id = item["work_item_id"]

    response = await client.post(f"/api/work-items/{item_id}/assign", json={"assigned_unit_id": unit["unit_id"]})
    assert response.status_code == 200
    assert response.json()["assigned_unit_id"] == unit["unit_id"]

    response = await client.post(f"/api/work-items/{item_id}/approve")
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    # Approving twice is an invalid transition.
    assert (await client.post(f"/api/work-items/{item_id}/approve")).status_code == 409

    listed = await client.get("/api/work-items/list", params={"status": "approved"})
    assert [i["work_item_id"] for i in listed.json()] == [item_id]

    assert await services.dispatcher.run_once() == 1
    assert await services.dispatcher.wait_settled(timeout=5)
    done = (await client.get(f"/api/work-items/{item_id}/get")).json()
    assert done["status"] == "completed"
    assert done["execution_id"] is not None


async def test_work_item_unknown_unit(client: AsyncClient) -> None:
    response = await client.post(
        "/api/work-items/create",
        json={"owner_id": "owner-1", "title": "x", "assigned_unit_id": "missing"},
    )
    assert response.status_code == 404

    item = await _create_item(client)
    response = await client.post(
        f"/api/work-items/{item['work_item_id']}/assign",
        json={"assigned_unit_id": "missing"},
    )
    assert response.status_code == 404
    assert (await client.post("/api/work-items/missing/approve")).status_code == 404


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


async def test_execution_logs_and_stream(client: AsyncClient, services: Services) -> None:
    unit = await _create_unit(client)
    trigger = (await client.post(f"/api/units/{unit['unit_id']}/trigger")).json()
    execution_id = trigger["execution_id"]
    await services.coordinator.wait_idle(timeout=5)

    listed = await client.get("/api/executions/list", params={"unit_id": unit["unit_id"]})
    assert [e["execution_id"] for e in listed.json()] == [execution_id]

    logs = (await client.get(f"/api/executions/{execution_id}/logs")).json()
    assert logs[0]["stage"] == "started"
    assert logs[-1]["stage"] == "completed"
    later = (await client.get(f"/api/executions/{execution_id}/logs", params={"after_seq": 2})).json()
    assert [e["seq"] for e in later] == [e["seq"] for e in logs[2:]]

    response = await client.get(f"/api/executions/{execution_id}/stream")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text.count("event: log") == len(logs)
    assert "event: completion" in response.text


async def test_execution_not_found(client: AsyncClient) -> None:
    assert (await client.get("/api/executions/missing/get")).status_code == 404
    assert (await client.get("/api/executions/missing/logs")).status_code == 404
    assert (await client.get("/api/executions/missing/stream")).status_code == 404
    assert (await client.get("/api/executions/list", params={"limit": 0})).status_code == 422
