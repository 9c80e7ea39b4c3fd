from datetime import timedelta

import pytest
from aiohttp.test_utils import TestClient, TestServer

from server import create_app
from tests.helpers import T0, device_action, once_at


@pytest.fixture
def app(scheduler, bus, registry):
    return create_app(None, bus, registry, scheduler)


def task_body(**overrides):
    body = once_at(T0 + timedelta(minutes=1), action=device_action())
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_health(app):
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["tasks"] == 0


@pytest.mark.asyncio
async def test_create_get_and_list(app):
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/tasks", json=task_body(name="kitchen on"))
        assert resp.status == 201
        created = await resp.json()
        assert created["status"] == "pending"
        assert created["id"].startswith("task_")

        resp = await client.get(f"/tasks/{created['id']}")
        assert resp.status == 200
        assert (await resp.json())["name"] == "kitchen on"

        resp = await client.get("/tasks")
        assert [t["id"] for t in await resp.json()] == [created["id"]]

        resp = await client.get("/tasks", params={"status": "completed"})
        assert await resp.json() == []


@pytest.mark.asyncio
async def test_create_rejects_invalid_task(app):
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/tasks", json={"name": "x", "type": "once"})
        assert resp.status == 400
        data = await resp.json()
        assert data["details"]

        resp = await client.post("/tasks", data="not json", headers={"Content-Type": "application/json"})
        assert resp.status == 400


@pytest.mark.asyncio
async def test_cancel_and_unknown_ids(app):
    async with TestClient(TestServer(app)) as client:
        created = await (await client.post("/tasks", json=task_body())).json()

        resp = await client.delete(f"/tasks/{created['id']}")
        assert resp.status == 200
        assert (await resp.json())["status"] == "cancelled"
        resp = await client.post(f"/tasks/{created['id']}/reschedule", json={"delay": 0})
        assert resp.status == 409

        assert (await client.delete("/tasks/task_missing")).status == 404
        assert (await client.get("/tasks/task_missing")).status == 404
        assert (await client.post("/tasks/task_missing/enable")).status == 404


@pytest.mark.asyncio
async def test_reschedule_enable_disable(app):
    async with TestClient(TestServer(app)) as client:
        created = await (await client.post("/tasks", json=task_body())).json()
        task_id = created["id"]

        resp = await client.post(f"/tasks/{task_id}/reschedule", json={"delay": "10m"})
        assert resp.status == 200
        assert (await resp.json())["next_execution"].startswith("2024-01-10T08:10:00")

        resp = await client.post(f"/tasks/{task_id}/reschedule", json={"delay": "later"})
        assert resp.status == 400
        resp = await client.post(f"/tasks/{task_id}/reschedule", json={})
        assert resp.status == 400

        resp = await client.post(f"/tasks/{task_id}/disable")
        data = await resp.json()
        assert data["enabled"] is False
        assert data["next_execution"] is None

        resp = await client.post(f"/tasks/{task_id}/enable")
        assert (await resp.json())["enabled"] is True


@pytest.mark.asyncio
async def test_statistics_history_and_events(app, scheduler, clock):
    async with TestClient(TestServer(app)) as client:
        created = await (await client.post("/tasks", json=task_body())).json()
        clock.advance(timedelta(minutes=1))
        await scheduler.scan_once()
        await scheduler.drain_once()

        stats = await (await client.get("/statistics")).json()
        assert stats["by_status"]["completed"] == 1
        assert stats["execution_history"]["successful"] == 1

        history = await (await client.get("/history", params={"task_id": created["id"]})).json()
        assert len(history) == 1
        assert history[0]["success"] is True

        assert (await client.get("/history", params={"limit": "0"})).status == 400

        events = await (await client.get("/events", params={"type": "task.completed"})).json()
        assert [e["payload"]["task_id"] for e in events] == [created["id"]]


@pytest.mark.asyncio
async def test_plugins_summary(app):
    async with TestClient(TestServer(app)) as client:
        data = await (await client.get("/state/plugins")).json()
        assert data["device"] == ["simulated_devices"]
        assert "persistence" not in data
