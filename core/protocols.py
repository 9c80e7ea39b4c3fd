"""Core protocols -- the narrow contracts the scheduler consumes.

The scheduler imports these protocols. Plugins implement them.
The scheduler NEVER imports concrete implementations.

All protocols use Python's structural subtyping (typing.Protocol):
if your class has the right methods, it implements the protocol.
No inheritance required.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from core.models.events import Event
from core.models.home import EnergyPrice, PresenceStatus
from core.models.tasks import ExecutionRecord, Task


# ---------------------------------------------------------------------------
# 1. EventBus -- inter-component communication
# ---------------------------------------------------------------------------

@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe event bus.

    Default implementation: AsyncIOBus (in-process pub/sub with JSONL audit).
    """

    async def publish(self, event: Event) -> None:
        ...

    def subscribe(self, event_type: str, callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...

    def unsubscribe(self, event_type: str, callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...


# ---------------------------------------------------------------------------
# 2. DeviceActuationService -- read and write device capabilities
# ---------------------------------------------------------------------------

@runtime_checkable
class DeviceActuationService(Protocol):
    """Sets and reads capability values (onoff, dim, target_temperature...).

    Both methods raise on failure; the scheduler decides how to treat errors.
    """

    @property
    def name(self) -> str:
        ...

    async def set_capability(self, device_id: str, capability: str, value: Any) -> None:
        ...

    async def get_capability(self, device_id: str, capability: str) -> Any:
        ...


# ---------------------------------------------------------------------------
# 3. SceneActivationService
# ---------------------------------------------------------------------------

@runtime_checkable
class SceneActivationService(Protocol):
    @property
    def name(self) -> str:
        ...

    async def activate(self, scene_id: str) -> None:
        ...


# ---------------------------------------------------------------------------
# 4. FlowTriggerService
# ---------------------------------------------------------------------------

@runtime_checkable
class FlowTriggerService(Protocol):
    @property
    def name(self) -> str:
        ...

    async def trigger(self, flow_id: str, tokens: dict) -> None:
        ...


# ---------------------------------------------------------------------------
# 5. PresenceService
# ---------------------------------------------------------------------------

@runtime_checkable
class PresenceService(Protocol):
    @property
    def name(self) -> str:
        ...

    async def get_status(self) -> PresenceStatus:
        ...


# ---------------------------------------------------------------------------
# 6. EnergyPriceService
# ---------------------------------------------------------------------------

@runtime_checkable
class EnergyPriceService(Protocol):
    @property
    def name(self) -> str:
        ...

    async def get_current_price(self) -> EnergyPrice:
        ...


# ---------------------------------------------------------------------------
# 7. SettingsService -- target of the built-in "setting" action
# ---------------------------------------------------------------------------

@runtime_checkable
class SettingsService(Protocol):
    @property
    def name(self) -> str:
        ...

    def set_setting(self, key: str, value: str | int | float | bool) -> None:
        ...

    def get_setting(self, key: str, default: Any = None) -> Any:
        ...


# ---------------------------------------------------------------------------
# 8. NotificationService -- user-visible alerts on terminal failure
# ---------------------------------------------------------------------------

@runtime_checkable
class NotificationService(Protocol):
    @property
    def name(self) -> str:
        ...

    async def notify(self, message: str) -> None:
        ...


# ---------------------------------------------------------------------------
# 9. PersistenceService -- durable snapshot of tasks and history
# ---------------------------------------------------------------------------

@runtime_checkable
class PersistenceService(Protocol):
    """Stores a serializable snapshot of the task set and history ring.

    Called after every mutating batch. Not required to be transactional;
    callers log and swallow failures.
    """

    @property
    def name(self) -> str:
        ...

    def load_tasks(self) -> list[Task]:
        ...

    def save_tasks(self, tasks: list[Task]) -> None:
        ...

    def load_history(self) -> list[ExecutionRecord]:
        ...

    def save_history(self, records: list[ExecutionRecord]) -> None:
        ...
