"""Scheduler exception types.

Deferrals (unmet conditions, constraints, dependencies or conflicts) are
not errors and never raise; they are reported as return values.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class TaskValidationError(SchedulerError, ValueError):
    """Task data was malformed; the task was not stored."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class TaskNotFoundError(SchedulerError, KeyError):
    """No task with the given id exists."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class ActionExecutionError(SchedulerError):
    """A task action failed (collaborator error or invalid action payload)."""


class TaskTimeoutError(ActionExecutionError):
    """A task action did not finish within the task's timeout."""

    def __init__(self, task_id: str, timeout: float) -> None:
        super().__init__(f"Task {task_id} timed out after {timeout:g}s")
        self.task_id = task_id
        self.timeout = timeout


class TaskStateError(SchedulerError, ValueError):
    """The task's current status does not allow the requested change."""

    def __init__(self, task_id: str, status: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} task {task_id} while it is {status}")
        self.task_id = task_id
        self.status = status
