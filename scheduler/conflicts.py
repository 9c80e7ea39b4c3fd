"""Conflict resolver -- tasks that would fight over the same device, scene or zone."""

from __future__ import annotations

import logging
from typing import Iterable, Literal

from pydantic import BaseModel, Field

from core.models.tasks import Task

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("running", "queued")


def tasks_conflict(a: Task, b: Task) -> bool:
    """True if two tasks target the same resource.

    Zone conflicts are declared through metadata.conflicting_zones and are
    checked in both directions.
    """
    device_a = getattr(a.action, "device_id", None)
    if device_a and device_a == getattr(b.action, "device_id", None):
        return True

    scene_a = getattr(a.action, "scene_id", None)
    if scene_a and scene_a == getattr(b.action, "scene_id", None):
        return True

    if b.action.zone and b.action.zone in a.conflicting_zones:
        return True
    if a.action.zone and a.action.zone in b.conflicting_zones:
        return True

    return False


class ConflictDecision(BaseModel):
    """Outcome of arbitration for one incoming task."""

    outcome: Literal["clear", "preempt", "defer"]
    conflicting: list[str] = Field(default_factory=list)
    reason: str = ""


class ConflictResolver:
    """Arbitrates between an incoming task and active (running/queued) tasks."""

    def find_conflicts(self, task: Task, active: Iterable[Task]) -> list[Task]:
        return [
            other for other in active
            if other.id != task.id
            and other.status in ACTIVE_STATUSES
            and tasks_conflict(task, other)
        ]

    def decide(self, task: Task, active: Iterable[Task]) -> ConflictDecision:
        """Strictly higher priority preempts every conflicting task;
        anything else defers the incoming task and cancels nothing.
        """
        conflicts = self.find_conflicts(task, active)
        if not conflicts:
            return ConflictDecision(outcome="clear")

        ids = [c.id for c in conflicts]
        blockers = [c for c in conflicts if c.priority >= task.priority]
        if blockers:
            top = max(blockers, key=lambda c: c.priority)
            return ConflictDecision(
                outcome="defer",
                conflicting=ids,
                reason=f"Conflicts with '{top.name}' (priority {top.priority} >= {task.priority})",
            )

        return ConflictDecision(
            outcome="preempt",
            conflicting=ids,
            reason=f"Priority {task.priority} preempts {len(ids)} lower-priority task(s)",
        )
