"""Plugin registry -- stores and retrieves collaborator implementations.

At startup, main.py instantiates plugins based on config.yaml and registers
them here. The scheduler queries the registry by protocol key and never
imports a concrete implementation.
"""

from __future__ import annotations

import logging
from typing import Any

from core.protocols import (
    DeviceActuationService,
    EnergyPriceService,
    FlowTriggerService,
    NotificationService,
    PersistenceService,
    PresenceService,
    SceneActivationService,
    SettingsService,
)

logger = logging.getLogger(__name__)

# All supported protocol types
PROTOCOL_TYPES = {
    "device": DeviceActuationService,
    "scene": SceneActivationService,
    "flow": FlowTriggerService,
    "presence": PresenceService,
    "energy_price": EnergyPriceService,
    "settings": SettingsService,
    "notifier": NotificationService,
    "persistence": PersistenceService,
}


class PluginRegistry:
    """Central registry for all collaborator implementations.

    Usage:
        registry = PluginRegistry()
        registry.register("notifier", webhook_notifier)
        registry.register("notifier", bus_notifier)

        notifiers = registry.get_all("notifier")   # [webhook, bus]
        devices = registry.first("device")         # None when nothing is wired
    """

    def __init__(self) -> None:
        self._plugins: dict[str, dict[str, Any]] = {key: {} for key in PROTOCOL_TYPES}

    def register(self, protocol_key: str, instance: Any) -> None:
        """Register a plugin instance under a protocol type.

        The instance must have a `name` property.
        """
        if protocol_key not in PROTOCOL_TYPES:
            raise ValueError(
                f"Unknown protocol key '{protocol_key}'. "
                f"Must be one of: {list(PROTOCOL_TYPES.keys())}"
            )

        name = instance.name
        if name in self._plugins[protocol_key]:
            logger.warning("Overwriting existing %s plugin '%s'", protocol_key, name)

        self._plugins[protocol_key][name] = instance
        logger.info("Registered %s plugin: %s", protocol_key, name)

    def get(self, protocol_key: str, name: str) -> Any:
        """Get a specific plugin by protocol type and name.

        Raises KeyError if not found.
        """
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        if name not in self._plugins[protocol_key]:
            available = list(self._plugins[protocol_key].keys())
            raise KeyError(
                f"No {protocol_key} plugin named '{name}'. "
                f"Available: {available}"
            )
        return self._plugins[protocol_key][name]

    def first(self, protocol_key: str) -> Any | None:
        """Return the first registered plugin for a protocol type, or None."""
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        for instance in self._plugins[protocol_key].values():
            return instance
        return None

    def get_all(self, protocol_key: str) -> list[Any]:
        """Get all plugins registered for a protocol type."""
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        return list(self._plugins[protocol_key].values())

    def has(self, protocol_key: str, name: str) -> bool:
        return protocol_key in self._plugins and name in self._plugins[protocol_key]

    def summary(self) -> dict[str, list[str]]:
        """Return a summary of all registered plugins."""
        return {
            key: list(plugins.keys())
            for key, plugins in self._plugins.items()
            if plugins
        }
