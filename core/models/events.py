"""Event model -- the universal message format for inter-component communication."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class Event(BaseModel):
    """A typed event that flows through the EventBus.

    Task lifecycle transitions, schedule adjustments and user-defined emit
    actions are all published as Events. When an events directory is
    configured they are persisted to daily JSONL files for auditability.
    """

    id: str = Field(default_factory=lambda: f"evt_{uuid4().hex[:12]}")
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    source: str
    payload: dict = Field(default_factory=dict)
    metadata: dict | None = None

    def derive(self, type: str, source: str, payload: dict | None = None) -> Event:
        """Create a new event in the same correlation chain."""
        return Event(
            type=type,
            correlation_id=self.correlation_id,
            source=source,
            payload=payload or {},
        )


# -- Event type constants --

class EventTypes:
    """Well-known event type strings."""

    # Task lifecycle
    TASK_CREATED = "task.created"
    TASK_QUEUED = "task.queued"
    TASK_DEFERRED = "task.deferred"
    TASK_RETRYING = "task.retrying"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_CANCELLED = "task.cancelled"

    # Optimizer
    SCHEDULE_OPTIMIZED = "schedule.optimized"

    # Notifications
    NOTIFICATION_SENT = "notification.sent"
