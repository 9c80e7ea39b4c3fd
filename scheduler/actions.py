"""Action dispatcher -- performs a task's action through the home collaborators.

Only the closed set of action variants is supported. There is no script or
expression action, and nothing here evaluates user-supplied code.
"""

from __future__ import annotations

import logging
import re

from core.bus import AsyncIOBus
from core.models.events import Event
from core.models.tasks import (
    DeviceAction,
    EmitAction,
    FlowAction,
    LogAction,
    SceneAction,
    SettingAction,
    Task,
)
from core.registry import PluginRegistry
from scheduler.errors import ActionExecutionError

logger = logging.getLogger(__name__)
task_logger = logging.getLogger("homesched.tasks")

_EVENT_NAME_STRIP = re.compile(r"[^a-zA-Z0-9_.\-:]")


def sanitize_event_name(name: str) -> str:
    return _EVENT_NAME_STRIP.sub("", str(name or ""))


class ActionDispatcher:
    def __init__(self, registry: PluginRegistry, bus: AsyncIOBus) -> None:
        self._registry = registry
        self._bus = bus

    async def perform(self, task: Task) -> None:
        """Run the task's action. Raises ActionExecutionError on failure."""
        action = task.action

        if isinstance(action, DeviceAction):
            devices = self._require("device")
            await devices.set_capability(action.device_id, action.capability, action.value)
        elif isinstance(action, SceneAction):
            scenes = self._require("scene")
            await scenes.activate(action.scene_id)
        elif isinstance(action, FlowAction):
            flows = self._require("flow")
            await flows.trigger(action.flow_id, action.tokens)
        elif isinstance(action, EmitAction):
            await self._emit(task, action)
        elif isinstance(action, SettingAction):
            self._set_setting(action)
        elif isinstance(action, LogAction):
            task_logger.info("[%s] %s", task.name, action.message)
        else:
            raise ActionExecutionError(f"Unsupported action type: {getattr(action, 'type', None)!r}")

    def _require(self, protocol_key: str):
        service = self._registry.first(protocol_key)
        if service is None:
            raise ActionExecutionError(f"No {protocol_key} service available")
        return service

    async def _emit(self, task: Task, action: EmitAction) -> None:
        event_name = sanitize_event_name(action.event)
        if not event_name:
            raise ActionExecutionError("Emit action requires a valid event name")
        await self._bus.publish(Event(
            type=event_name,
            source="scheduler",
            payload={**action.data, "task_id": task.id},
        ))

    def _set_setting(self, action: SettingAction) -> None:
        if not action.key:
            raise ActionExecutionError("Setting action requires a key")
        if not isinstance(action.value, (str, int, float, bool)):
            raise ActionExecutionError("Setting value must be a string, number, or boolean")
        settings = self._require("settings")
        settings.set_setting(action.key, action.value)
