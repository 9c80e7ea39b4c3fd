"""Pydantic data models shared across all components."""

from core.models.events import Event, EventTypes
from core.models.home import EnergyPrice, PresenceStatus
from core.models.tasks import (
    ConditionalSchedule,
    DeviceAction,
    EmitAction,
    ExecutionRecord,
    FlowAction,
    LogAction,
    OnceSchedule,
    QueueEntry,
    RecurringSchedule,
    SceneAction,
    SettingAction,
    Task,
    TaskConstraints,
)

__all__ = [
    "Event",
    "EventTypes",
    "EnergyPrice",
    "PresenceStatus",
    "Task",
    "TaskConstraints",
    "OnceSchedule",
    "RecurringSchedule",
    "ConditionalSchedule",
    "DeviceAction",
    "SceneAction",
    "FlowAction",
    "EmitAction",
    "SettingAction",
    "LogAction",
    "QueueEntry",
    "ExecutionRecord",
]
