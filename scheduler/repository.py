"""Task repository -- the authoritative set of Task records.

Every mutation is followed by a flush to the persistence service. A failed
flush is logged and never rolls back the in-memory change.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from core.models.tasks import Task, new_task_id
from core.protocols import PersistenceService
from core.time_context import TimeContext
from scheduler.errors import TaskNotFoundError, TaskStateError, TaskValidationError
from scheduler.queue import ExecutionQueue
from scheduler.recurrence import next_execution

logger = logging.getLogger(__name__)

# Fields owned by the scheduler; ignored when supplied by callers.
_LIFECYCLE_FIELDS = (
    "id",
    "status",
    "created",
    "last_execution",
    "next_execution",
    "execution_count",
    "failure_count",
)
_IN_FLIGHT = ("queued", "running", "retrying")
_WAITING = ("queued", "retrying")


class TaskRepository:
    def __init__(
        self,
        clock: TimeContext,
        queue: ExecutionQueue | None = None,
        persistence: PersistenceService | None = None,
    ) -> None:
        self._clock = clock
        self._queue = queue
        self._persistence = persistence
        self._tasks: dict[str, Task] = {}
        self._issued_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list(self, predicate: Callable[[Task], bool] | None = None) -> list[Task]:
        if predicate is None:
            return list(self._tasks.values())
        return [t for t in self._tasks.values() if predicate(t)]

    def by_status(self, *statuses: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.status in statuses]

    def running_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status == "running")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, task_data: dict[str, Any] | Task) -> Task:
        """Validate, assign an id, compute the first run, and store a task."""
        if isinstance(task_data, Task):
            task_data = task_data.model_dump()
        data = {k: v for k, v in dict(task_data).items() if k not in _LIFECYCLE_FIELDS}

        try:
            task = Task.model_validate({**data, "id": self._new_id()})
        except ValidationError as exc:
            errors = json.loads(exc.json(include_url=False))
            raise TaskValidationError(
                f"Invalid task data: {exc.error_count()} error(s)", errors
            ) from exc

        now = self._clock.now()
        task.created = now
        task.status = "pending"
        task.next_execution = next_execution(task, now)

        self._tasks[task.id] = task
        logger.info(
            "Created task: %s [%s, %s] next=%s",
            task.name, task.id, task.type, task.next_execution,
        )
        self.flush()
        return task

    def cancel(self, task_id: str) -> Task:
        """Mark a task cancelled and pull it out of the queue.

        An action already in flight is not aborted.
        """
        task = self.require(task_id)
        if task.status == "cancelled":
            return task

        previous = task.status
        task.status = "cancelled"
        task.next_execution = None
        removed = self._queue.remove_task(task_id) if self._queue is not None else 0

        logger.info(
            "Cancelled task: %s [%s] (was %s, removed from queue: %d)",
            task.name, task.id, previous, removed,
        )
        self.flush()
        return task

    def reschedule(self, task_id: str, delay: float | timedelta) -> Task:
        """Push a task's next run `delay` into the future and reset it to pending.

        Cancelled tasks are terminal and a running task keeps its status
        until its attempt resolves, so both raise TaskStateError.
        """
        task = self.require(task_id)
        if task.status in ("cancelled", "running"):
            raise TaskStateError(task_id, task.status, "reschedule")
        if not isinstance(delay, timedelta):
            delay = timedelta(seconds=delay)

        if self._queue is not None:
            self._queue.remove_task(task_id)
        task.next_execution = self._clock.now() + delay
        task.status = "pending"

        logger.info("Rescheduled task %s to %s", task.name, task.next_execution)
        self.flush()
        return task

    def set_enabled(self, task_id: str, enabled: bool) -> Task:
        """Enable or disable a task. Re-enabling recomputes its next run.

        Enabling a task that is already enabled and in flight is a no-op.
        """
        task = self.require(task_id)
        if enabled and task.enabled and task.status in _IN_FLIGHT:
            logger.debug("Task %s already enabled and %s", task.name, task.status)
            return task
        task.enabled = enabled

        if not enabled:
            task.next_execution = None
            if self._queue is not None:
                self._queue.remove_task(task_id)
            if task.status in _WAITING:
                task.status = "pending"
        elif task.status != "cancelled":
            if self._queue is not None:
                self._queue.remove_task(task_id)
            task.next_execution = next_execution(task, self._clock.now())
            if task.next_execution is not None and task.status != "running":
                task.status = "pending"

        logger.info("Task %s %s (next=%s)", task.name, "enabled" if enabled else "disabled", task.next_execution)
        self.flush()
        return task

    def load(self, tasks: Iterable[Task]) -> int:
        """Restore a persisted snapshot.

        The queue is never persisted, so tasks caught mid-flight go back to
        pending and are picked up again by the next scan.
        """
        count = 0
        for task in tasks:
            if task.status in _IN_FLIGHT:
                logger.info("Task %s was %s at shutdown; resetting to pending", task.id, task.status)
                task.status = "pending"
                if task.enabled and task.next_execution is None:
                    task.next_execution = self._clock.now()
            self._tasks[task.id] = task
            self._issued_ids.add(task.id)
            count += 1
        return count

    def flush(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.save_tasks(self.list())
        except Exception:
            logger.exception("Failed to persist tasks")

    def _new_id(self) -> str:
        task_id = new_task_id()
        while task_id in self._issued_ids:
            task_id = new_task_id()
        self._issued_ids.add(task_id)
        return task_id
