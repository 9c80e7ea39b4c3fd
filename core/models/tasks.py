"""Task model -- declarative automation tasks owned by the scheduler.

A task couples a schedule (when), an action (what), and a set of gates
(conditions, constraints, dependencies) that decide whether a due task may
actually run. Actions are a closed set of variants; nothing here can carry
executable code.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from core.duration import to_seconds

TaskType = Literal["once", "recurring", "conditional"]
TaskStatus = Literal[
    "pending",
    "queued",
    "running",
    "completed",
    "failed",
    "retrying",
    "cancelled",
]
TASK_STATUSES: tuple[str, ...] = (
    "pending",
    "queued",
    "running",
    "completed",
    "failed",
    "retrying",
    "cancelled",
)
Frequency = Literal["hourly", "daily", "weekly", "monthly", "interval"]


def new_task_id() -> str:
    return f"task_{uuid4().hex[:12]}"


def _seconds(value: Any) -> Any:
    if value is None:
        return None
    return to_seconds(value)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

class OnceSchedule(BaseModel):
    """Run a single time at an absolute instant."""

    time: datetime


class RecurringSchedule(BaseModel):
    """Calendar or fixed-interval recurrence.

    `hour` is optional so that hourly and interval schedules never look like
    they are pinned to midnight.
    """

    frequency: Frequency
    minute: int = Field(default=0, ge=0, le=59)
    hour: int | None = Field(default=None, ge=0, le=23)
    day_of_week: int = Field(default=0, ge=0, le=6)  # 0=Sunday
    day: int = Field(default=1, ge=1, le=31)
    interval: float = Field(default=3600.0, gt=0)  # seconds

    @field_validator("interval", mode="before")
    @classmethod
    def _coerce_interval(cls, value: Any) -> Any:
        return _seconds(value)


class ConditionalSchedule(BaseModel):
    """No fixed instant: the task is re-checked until its conditions hold."""


Schedule = Union[OnceSchedule, RecurringSchedule, ConditionalSchedule]

_SCHEDULE_TYPES: dict[str, type[BaseModel]] = {
    "once": OnceSchedule,
    "recurring": RecurringSchedule,
    "conditional": ConditionalSchedule,
}


# ---------------------------------------------------------------------------
# Actions (closed set)
# ---------------------------------------------------------------------------

class _ActionBase(BaseModel):
    zone: str | None = None


class DeviceAction(_ActionBase):
    type: Literal["device"] = "device"
    device_id: str
    capability: str
    value: Any = None


class SceneAction(_ActionBase):
    type: Literal["scene"] = "scene"
    scene_id: str


class FlowAction(_ActionBase):
    type: Literal["flow"] = "flow"
    flow_id: str
    tokens: dict = Field(default_factory=dict)


class EmitAction(_ActionBase):
    type: Literal["emit"] = "emit"
    event: str
    data: dict = Field(default_factory=dict)


class SettingAction(_ActionBase):
    type: Literal["setting"] = "setting"
    key: str
    value: Union[bool, int, float, str]


class LogAction(_ActionBase):
    type: Literal["log"] = "log"
    message: str = ""


Action = Annotated[
    Union[DeviceAction, SceneAction, FlowAction, EmitAction, SettingAction, LogAction],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Conditions (closed set, ANDed)
# ---------------------------------------------------------------------------

_HHMM = r"^([01]?\d|2[0-3]):[0-5]\d$"


class TimeRangeCondition(BaseModel):
    type: Literal["time_range"] = "time_range"
    start: str = Field(pattern=_HHMM)
    end: str = Field(pattern=_HHMM)


class PresenceCondition(BaseModel):
    type: Literal["presence"] = "presence"
    expected_state: str


class DeviceStateCondition(BaseModel):
    type: Literal["device_state"] = "device_state"
    device_id: str
    capability: str
    operator: Literal["equals", "not_equals", "greater_than", "less_than"] = "equals"
    value: Any = None


class WeatherCondition(BaseModel):
    type: Literal["weather"] = "weather"
    condition: str | None = None


class EnergyPriceCondition(BaseModel):
    type: Literal["energy_price"] = "energy_price"
    operator: Literal["below", "above", "level"]
    price: float | None = None
    level: str | None = None

    @model_validator(mode="after")
    def _check_operand(self) -> EnergyPriceCondition:
        if self.operator == "level" and self.level is None:
            raise ValueError("energy_price condition with operator 'level' needs 'level'")
        if self.operator in ("below", "above") and self.price is None:
            raise ValueError(f"energy_price condition with operator '{self.operator}' needs 'price'")
        return self


Condition = Annotated[
    Union[
        TimeRangeCondition,
        PresenceCondition,
        DeviceStateCondition,
        WeatherCondition,
        EnergyPriceCondition,
    ],
    Field(discriminator="type"),
]


class TaskConstraints(BaseModel):
    exclude_hours: list[Annotated[int, Field(ge=0, le=23)]] = Field(default_factory=list)
    max_concurrent: int | None = Field(default=None, ge=1)
    max_energy_price: float | None = None
    dependency_max_age: float | None = Field(default=None, gt=0)  # seconds

    @field_validator("dependency_max_age", mode="before")
    @classmethod
    def _coerce_age(cls, value: Any) -> Any:
        return _seconds(value)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

class Task(BaseModel):
    """A schedulable unit of automation work."""

    id: str = Field(default_factory=new_task_id)
    name: str = Field(min_length=1)
    description: str | None = None
    type: TaskType
    schedule: Schedule
    action: Action
    priority: int = Field(default=5, ge=1, le=10)
    constraints: TaskConstraints = Field(default_factory=TaskConstraints)
    conditions: list[Condition] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    # Execution policy
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=300.0, ge=0)  # seconds
    timeout: float = Field(default=60.0, gt=0)  # seconds
    enabled: bool = True

    # Lifecycle
    status: TaskStatus = "pending"
    created: datetime | None = None
    last_execution: datetime | None = None
    next_execution: datetime | None = None
    execution_count: int = 0
    failure_count: int = 0

    metadata: dict = Field(default_factory=dict)

    @field_validator("retry_delay", "timeout", mode="before")
    @classmethod
    def _coerce_policy(cls, value: Any) -> Any:
        return _seconds(value)

    @model_validator(mode="before")
    @classmethod
    def _parse_schedule(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        schedule_cls = _SCHEDULE_TYPES.get(data.get("type"))
        schedule = data.get("schedule")
        if schedule_cls is None:
            return data
        if schedule is None:
            if schedule_cls is ConditionalSchedule:
                data = {**data, "schedule": ConditionalSchedule()}
            return data
        if isinstance(schedule, dict):
            data = {**data, "schedule": schedule_cls(**schedule)}
        return data

    @model_validator(mode="after")
    def _check_schedule_matches_type(self) -> Task:
        expected = _SCHEDULE_TYPES[self.type]
        if not isinstance(self.schedule, expected):
            raise ValueError(
                f"Task of type '{self.type}' needs a {expected.__name__}, "
                f"got {type(self.schedule).__name__}"
            )
        return self

    @property
    def conflicting_zones(self) -> list[str]:
        zones = self.metadata.get("conflicting_zones") or []
        return [str(z) for z in zones]

    @property
    def repeats(self) -> bool:
        """Recurring and conditional tasks re-arm after every outcome."""
        return self.type in ("recurring", "conditional")


class QueueEntry(BaseModel):
    """A task waiting in the execution queue. Never persisted on its own."""

    task: Task
    enqueued_at: datetime
    attempt: int = 0


class ExecutionRecord(BaseModel):
    """One row of the bounded execution history."""

    task_id: str
    task_name: str
    timestamp: datetime
    success: bool
    error_message: str | None = None
    duration_ms: float = 0.0
    attempt: int = 0
