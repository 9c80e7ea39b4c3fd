"""Shared builders for task payloads and collaborator mocks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

# Wednesday
T0 = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


def named_mock(name: str, cls=AsyncMock) -> Any:
    mock = cls()
    mock.name = name
    return mock


def once_at(when: datetime, **overrides: Any) -> dict[str, Any]:
    """Task data for a one-off task."""
    data: dict[str, Any] = {
        "name": "once",
        "type": "once",
        "schedule": {"time": when.isoformat()},
        "action": {"type": "log", "message": "once"},
    }
    data.update(overrides)
    return data


def device_action(device_id: str = "light.kitchen", value: Any = True, **extra: Any) -> dict[str, Any]:
    return {"type": "device", "device_id": device_id, "capability": "onoff", "value": value, **extra}
