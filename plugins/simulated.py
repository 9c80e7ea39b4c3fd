"""Simulated home -- in-memory collaborators for development and dry runs.

Nothing here touches real hardware. Devices are plain dicts of capability
values, scene and flow activations are recorded, and presence and energy
price are static readings that tests can change at will.
"""

from __future__ import annotations

import logging
from typing import Any

from core.models.home import EnergyPrice, PresenceStatus

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "simulated",
    "display_name": "Simulated home",
    "description": "In-memory devices, scenes, flows, presence and energy price",
    "category": "home",
    "protocols": ["device", "scene", "flow", "presence", "energy_price"],
    "pip_dependencies": [],
}


class SimulatedDevices:
    """Implements the DeviceActuationService protocol over an in-memory map."""

    def __init__(self, devices: dict[str, dict[str, Any]] | None = None, strict: bool = False) -> None:
        self._devices: dict[str, dict[str, Any]] = {
            device_id: dict(caps) for device_id, caps in (devices or {}).items()
        }
        # strict: unknown devices raise instead of being created on write
        self._strict = strict
        self.writes: list[tuple[str, str, Any]] = []

    @property
    def name(self) -> str:
        return "simulated_devices"

    async def set_capability(self, device_id: str, capability: str, value: Any) -> None:
        if device_id not in self._devices:
            if self._strict:
                raise KeyError(f"Unknown device: {device_id}")
            self._devices[device_id] = {}
        self._devices[device_id][capability] = value
        self.writes.append((device_id, capability, value))
        logger.info("Set %s.%s = %r", device_id, capability, value)

    async def get_capability(self, device_id: str, capability: str) -> Any:
        try:
            return self._devices[device_id][capability]
        except KeyError:
            raise KeyError(f"Unknown capability {capability} on device {device_id}") from None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {device_id: dict(caps) for device_id, caps in self._devices.items()}


class SimulatedScenes:
    def __init__(self, scenes: list[str] | None = None) -> None:
        self._known = set(scenes or [])
        self.activated: list[str] = []

    @property
    def name(self) -> str:
        return "simulated_scenes"

    async def activate(self, scene_id: str) -> None:
        if self._known and scene_id not in self._known:
            raise KeyError(f"Unknown scene: {scene_id}")
        self.activated.append(scene_id)
        logger.info("Activated scene %s", scene_id)


class SimulatedFlows:
    def __init__(self, flows: list[str] | None = None) -> None:
        self._known = set(flows or [])
        self.triggered: list[tuple[str, dict]] = []

    @property
    def name(self) -> str:
        return "simulated_flows"

    async def trigger(self, flow_id: str, tokens: dict) -> None:
        if self._known and flow_id not in self._known:
            raise KeyError(f"Unknown flow: {flow_id}")
        self.triggered.append((flow_id, dict(tokens or {})))
        logger.info("Triggered flow %s", flow_id)


class StaticPresence:
    def __init__(self, status: str = "home") -> None:
        self.status = status

    @property
    def name(self) -> str:
        return "static_presence"

    async def get_status(self) -> PresenceStatus:
        return PresenceStatus(status=self.status)


class StaticEnergyPrice:
    def __init__(self, price: float = 0.25, level: str = "normal", currency: str = "EUR") -> None:
        self.price = price
        self.level = level
        self.currency = currency

    @property
    def name(self) -> str:
        return "static_energy_price"

    async def get_current_price(self) -> EnergyPrice:
        return EnergyPrice(price=self.price, level=self.level, currency=self.currency)
