from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.bus import AsyncIOBus
from core.models.tasks import Task
from core.registry import PluginRegistry
from core.time_context import TimeContext
from plugins.simulated import (
    SimulatedDevices,
    SimulatedFlows,
    SimulatedScenes,
    StaticEnergyPrice,
    StaticPresence,
)
from scheduler.runner import Scheduler
from tests.helpers import T0, named_mock


@pytest.fixture
def clock() -> TimeContext:
    return TimeContext.at(T0)


@pytest.fixture
def bus() -> AsyncIOBus:
    return AsyncIOBus()


@pytest.fixture
def devices() -> SimulatedDevices:
    return SimulatedDevices({"light.kitchen": {"onoff": False, "dim": 0.0}})


@pytest.fixture
def presence() -> StaticPresence:
    return StaticPresence("home")


@pytest.fixture
def energy() -> StaticEnergyPrice:
    return StaticEnergyPrice(price=0.20, level="normal")


@pytest.fixture
def notifier() -> AsyncMock:
    return named_mock("test_notifier")


@pytest.fixture
def settings() -> MagicMock:
    return named_mock("test_settings", MagicMock)


@pytest.fixture
def registry(devices, presence, energy, notifier, settings) -> PluginRegistry:
    registry = PluginRegistry()
    registry.register("device", devices)
    registry.register("scene", SimulatedScenes())
    registry.register("flow", SimulatedFlows())
    registry.register("presence", presence)
    registry.register("energy_price", energy)
    registry.register("notifier", notifier)
    registry.register("settings", settings)
    return registry


@pytest.fixture
def scheduler(registry, bus, clock) -> Scheduler:
    return Scheduler(registry=registry, bus=bus, clock=clock, deferral_delay=300)


@pytest.fixture
def events(bus) -> list:
    """Every event published on the bus, in order."""
    captured: list = []

    async def _capture(event):
        captured.append(event)

    bus.subscribe("*", _capture)
    return captured


@pytest.fixture
def make_task():
    """Build a validated Task; defaults to a recurring hourly log task."""

    def _make(**overrides: Any) -> Task:
        data: dict[str, Any] = {
            "name": "test task",
            "type": "recurring",
            "schedule": {"frequency": "hourly", "minute": 0},
            "action": {"type": "log", "message": "hello"},
        }
        data.update(overrides)
        return Task.model_validate(data)

    return _make


@pytest.fixture
def scheduler_with(bus, clock, notifier, settings):
    """Build a Scheduler over a registry with some collaborators swapped out.

    Pass `key=None` to leave a collaborator unregistered, or a list to
    register several implementations under one key.
    """

    def _build(**services: Any) -> Scheduler:
        wired: dict[str, Any] = {
            "device": SimulatedDevices(),
            "scene": SimulatedScenes(),
            "flow": SimulatedFlows(),
            "notifier": notifier,
            "settings": settings,
        }
        wired.update(services)
        registry = PluginRegistry()
        for key, service in wired.items():
            if service is None:
                continue
            for instance in service if isinstance(service, list) else [service]:
                registry.register(key, instance)
        return Scheduler(registry=registry, bus=bus, clock=clock, deferral_delay=300)

    return _build
