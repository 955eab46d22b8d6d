"""Tests for the FastAPI server."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from taskrouter.api.server import create_app
from taskrouter.context import AppContext

from .conftest import RecordingNotifier


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def client(app: AppContext) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=create_app(app))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _setup_router(client: AsyncClient) -> None:
    response = await client.put("/api/routers/r1", json={"name": "support"})
    assert response.status_code == 200
    response = await client.put("/api/routers/r1/queues/q1", json={"predicate": "lang==en"})
    assert response.status_code == 200


@pytest.mark.anyio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "uptime_seconds" in data


@pytest.mark.anyio
async def test_create_router(client: AsyncClient) -> None:
    response = await client.post("/api/routers", json={"name": "sales"})
    assert response.status_code == 201
    ref = response.json()["ref"]
    response = await client.get(f"/api/routers/{ref}")
    assert response.json()["name"] == "sales"
    response = await client.get("/api/routers")
    assert [r["ref"] for r in response.json()] == [ref]


@pytest.mark.anyio
async def test_task_lifecycle(client: AsyncClient, notifier: RecordingNotifier) -> None:
    await _setup_router(client)
    response = await client.put(
        "/api/routers/r1/agents/a1", json={"address": "sip:a1", "capabilities": {"lang": "en"}}
    )
    assert response.status_code == 200
    assert response.json()["state"] == "offline"
    response = await client.get("/api/routers/r1/agents/a1/queues")
    assert response.json() == ["q1"]

    response = await client.post("/api/routers/r1/agents/a1", json={"state": "ready"})
    assert response.json()["state"] == "ready"

    response = await client.post(
        "/api/routers/r1/tasks",
        json={"requirements": {"lang": "en"}, "queue_ref": "q1", "user_context": {"ticket": 7}},
    )
    assert response.status_code == 201
    task = response.json()
    assert (task["state"], task["agent_ref"]) == ("assigned", "a1")
    assert len(notifier.assigned) == 1

    response = await client.post(f"/api/routers/r1/tasks/{task['ref']}/complete")
    assert response.status_code == 200
    assert response.json()["state"] == "ready"
    response = await client.get(f"/api/routers/r1/tasks/{task['ref']}")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_plan_routing(client: AsyncClient) -> None:
    await _setup_router(client)
    await client.put("/api/routers/r1/queues/any", json={"predicate": "true"})
    response = await client.put(
        "/api/routers/r1/plans/p1",
        json={
            "rules": [
                {"tag": "english", "predicate": "lang==en", "routes": [{"queue_ref": "q1", "timeout": 30}]}
            ],
            "default_route": {"queue_ref": "any"},
        },
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/routers/r1/tasks", json={"requirements": {"lang": "de"}, "plan_ref": "p1"}
    )
    assert response.status_code == 201
    assert response.json()["queue_ref"] == "any"


@pytest.mark.anyio
async def test_not_found(client: AsyncClient) -> None:
    response = await client.get("/api/routers/nope/queues/q1")
    assert response.status_code == 404
    assert response.json() == {
        "error": {"kind": "not_found", "description": "Queue nope:q1 not found"}
    }


@pytest.mark.anyio
async def test_bad_predicate(client: AsyncClient) -> None:
    await client.put("/api/routers/r1", json={})
    response = await client.post("/api/routers/r1/queues", json={"predicate": "lang=="})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "expression"


@pytest.mark.anyio
async def test_state_not_settable(client: AsyncClient) -> None:
    await _setup_router(client)
    await client.put("/api/routers/r1/agents/a1", json={})
    response = await client.post("/api/routers/r1/agents/a1", json={"state": "busy"})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "bad_value"


@pytest.mark.anyio
async def test_task_needs_one_target(client: AsyncClient) -> None:
    await _setup_router(client)
    response = await client.post(
        "/api/routers/r1/tasks", json={"queue_ref": "q1", "plan_ref": "p1"}
    )
    assert response.status_code == 400


@pytest.mark.anyio
async def test_router_delete_conflict(client: AsyncClient) -> None:
    await _setup_router(client)
    response = await client.delete("/api/routers/r1")
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "invalid_state"

    assert (await client.delete("/api/routers/r1/queues/q1")).status_code == 204
    assert (await client.delete("/api/routers/r1")).status_code == 204


@pytest.mark.anyio
async def test_request_validation_is_bad_value(client: AsyncClient) -> None:
    await _setup_router(client)
    await client.put("/api/routers/r1/agents/a1", json={})

    response = await client.post("/api/routers/r1/agents/a1", json={"state": "sleeping"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["kind"] == "bad_value"
    assert "state" in error["description"]

    response = await client.post("/api/routers/r1/tasks", json={"queue_ref": 5})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "bad_value"


@pytest.mark.anyio
async def test_bad_callback_url(client: AsyncClient) -> None:
    await _setup_router(client)
    response = await client.post(
        "/api/routers/r1/tasks", json={"queue_ref": "q1", "callback_url": "http://[::1/cb"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "bad_value"
    assert (await client.get("/api/routers/r1/tasks")).json() == []
