"""Lightweight aiohttp server -- the scheduler's HTTP API.

Task CRUD, statistics, execution history and the recent event feed.
No framework magic, no middleware stack.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from aiohttp import web

from scheduler.errors import TaskNotFoundError, TaskStateError, TaskValidationError

if TYPE_CHECKING:
    from core.bus import AsyncIOBus
    from core.config import AppConfig
    from core.models.events import Event
    from core.registry import PluginRegistry
    from scheduler.runner import Scheduler

logger = logging.getLogger(__name__)


def create_app(
    config: AppConfig | None,
    bus: AsyncIOBus,
    registry: PluginRegistry,
    scheduler: Scheduler,
) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application()

    # Store references for route handlers
    app["config"] = config
    app["bus"] = bus
    app["registry"] = registry
    app["scheduler"] = scheduler

    # Register routes
    app.router.add_get("/health", handle_health)
    app.router.add_get("/tasks", handle_list_tasks)
    app.router.add_post("/tasks", handle_create_task)
    app.router.add_get("/tasks/{task_id}", handle_get_task)
    app.router.add_delete("/tasks/{task_id}", handle_cancel_task)
    app.router.add_post("/tasks/{task_id}/reschedule", handle_reschedule_task)
    app.router.add_post("/tasks/{task_id}/enable", handle_enable_task)
    app.router.add_post("/tasks/{task_id}/disable", handle_disable_task)
    app.router.add_get("/statistics", handle_statistics)
    app.router.add_get("/history", handle_history)
    app.router.add_get("/events", handle_recent_events)
    app.router.add_get("/events/stream", handle_stream_events)
    app.router.add_get("/state/plugins", handle_get_plugins)

    return app


def _not_found(exc: TaskNotFoundError) -> web.Response:
    return web.json_response({"error": str(exc)}, status=404)


async def _read_json(request: web.Request) -> dict | None:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


def _int_query(request: web.Request, key: str) -> int | None:
    raw = request.query.get(key)
    if raw is None or raw == "":
        return None
    value = int(raw)
    if value < 1:
        raise ValueError(f"{key} must be positive")
    return value


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def handle_health(request: web.Request) -> web.Response:
    """GET /health -- health check."""
    scheduler: Scheduler = request.app["scheduler"]
    return web.json_response({
        "status": "ok",
        "scheduler_running": scheduler.running,
        "tasks": len(scheduler.list_tasks()),
        "time": scheduler.clock.now().isoformat(),
    })


async def handle_list_tasks(request: web.Request) -> web.Response:
    """GET /tasks[?status=] -- list tasks, optionally filtered by status."""
    scheduler: Scheduler = request.app["scheduler"]
    tasks = scheduler.list_tasks(request.query.get("status"))
    return web.json_response([t.model_dump(mode="json") for t in tasks])


async def handle_get_task(request: web.Request) -> web.Response:
    """GET /tasks/{task_id} -- one task."""
    scheduler: Scheduler = request.app["scheduler"]
    task = scheduler.get_task(request.match_info["task_id"])
    if task is None:
        return web.json_response({"error": "Task not found"}, status=404)
    return web.json_response(task.model_dump(mode="json"))


async def handle_create_task(request: web.Request) -> web.Response:
    """POST /tasks -- create a new task.

    Body: {"name": "...", "type": "recurring", "schedule": {...}, "action": {...}}
    """
    scheduler: Scheduler = request.app["scheduler"]

    body = await _read_json(request)
    if body is None:
        return web.json_response({"error": "Invalid JSON"}, status=400)

    try:
        task = await scheduler.create_task(body)
    except TaskValidationError as exc:
        return web.json_response({"error": str(exc), "details": exc.errors}, status=400)

    return web.json_response(task.model_dump(mode="json"), status=201)


async def handle_cancel_task(request: web.Request) -> web.Response:
    """DELETE /tasks/{task_id} -- cancel a task (it stays listed for audit)."""
    scheduler: Scheduler = request.app["scheduler"]
    try:
        task = await scheduler.cancel_task(request.match_info["task_id"])
    except TaskNotFoundError as exc:
        return _not_found(exc)
    return web.json_response(task.model_dump(mode="json"))


async def handle_reschedule_task(request: web.Request) -> web.Response:
    """POST /tasks/{task_id}/reschedule -- body {"delay": "5m"} or {"delay": 300}."""
    scheduler: Scheduler = request.app["scheduler"]

    body = await _read_json(request)
    if body is None or "delay" not in body:
        return web.json_response({"error": "Missing required field: delay"}, status=400)

    try:
        task = await scheduler.reschedule_task(request.match_info["task_id"], body["delay"])
    except TaskNotFoundError as exc:
        return _not_found(exc)
    except TaskStateError as exc:
        return web.json_response({"error": str(exc)}, status=409)
    except ValueError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    return web.json_response(task.model_dump(mode="json"))


async def handle_enable_task(request: web.Request) -> web.Response:
    """POST /tasks/{task_id}/enable"""
    return await _set_enabled(request, True)


async def handle_disable_task(request: web.Request) -> web.Response:
    """POST /tasks/{task_id}/disable"""
    return await _set_enabled(request, False)


async def _set_enabled(request: web.Request, enabled: bool) -> web.Response:
    scheduler: Scheduler = request.app["scheduler"]
    try:
        task = await scheduler.set_task_enabled(request.match_info["task_id"], enabled)
    except TaskNotFoundError as exc:
        return _not_found(exc)
    return web.json_response(task.model_dump(mode="json"))


async def handle_statistics(request: web.Request) -> web.Response:
    """GET /statistics -- task counts, queue length, execution summary."""
    scheduler: Scheduler = request.app["scheduler"]
    return web.json_response(scheduler.get_statistics())


async def handle_history(request: web.Request) -> web.Response:
    """GET /history[?task_id=&limit=] -- execution records, oldest first."""
    scheduler: Scheduler = request.app["scheduler"]
    try:
        limit = _int_query(request, "limit")
    except ValueError:
        return web.json_response({"error": "limit must be a positive integer"}, status=400)

    records = scheduler.get_history(request.query.get("task_id"), limit)
    return web.json_response([r.model_dump(mode="json") for r in records])


async def handle_recent_events(request: web.Request) -> web.Response:
    """GET /events[?type=&limit=] -- recently published events."""
    bus: AsyncIOBus = request.app["bus"]
    try:
        limit = _int_query(request, "limit")
    except ValueError:
        return web.json_response({"error": "limit must be a positive integer"}, status=400)

    events = bus.recent(request.query.get("type"), limit)
    return web.json_response([e.model_dump(mode="json") for e in events])


async def handle_stream_events(request: web.Request) -> web.StreamResponse:
    """GET /events/stream -- Server-Sent Events stream of every bus event."""
    bus: AsyncIOBus = request.app["bus"]

    response = web.StreamResponse(
        status=200,
        reason="OK",
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
    await response.prepare(request)

    queue: asyncio.Queue[Event] = asyncio.Queue()

    async def forward_event(event: Event) -> None:
        await queue.put(event)

    bus.subscribe("*", forward_event)

    try:
        while True:
            event = await queue.get()
            data = event.model_dump_json()
            await response.write(f"event: {event.type}\ndata: {data}\n\n".encode())
    except (asyncio.CancelledError, ConnectionResetError):
        pass
    finally:
        bus.unsubscribe("*", forward_event)

    return response


async def handle_get_plugins(request: web.Request) -> web.Response:
    """GET /state/plugins -- list all registered collaborators."""
    registry: PluginRegistry = request.app["registry"]
    return web.json_response(registry.summary())
