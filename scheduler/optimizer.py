"""Schedule optimizer -- nudges chronically failing recurring tasks to another hour.

A heuristic: if most recent failures cluster on the hour the task is pinned
to, move it two hours later. It never disables a task.
"""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import Hashable, Sequence

from core.models.tasks import RecurringSchedule, Task
from scheduler.history import HistoryLog
from scheduler.recurrence import next_execution
from scheduler.repository import TaskRepository

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 3
FAILURE_SAMPLE = 10
HOUR_SHIFT = 2


def most_common(values: Sequence[Hashable]) -> Hashable | None:
    """Mode of a sequence; ties go to the value that reached the top count first."""
    counts: dict[Hashable, int] = {}
    best = values[0] if values else None
    best_count = 0
    for value in values:
        counts[value] = counts.get(value, 0) + 1
        if counts[value] > best_count:
            best_count = counts[value]
            best = value
    return best


class ScheduleOptimizer:
    def __init__(self, repository: TaskRepository, history: HistoryLog, tz: tzinfo) -> None:
        self._repository = repository
        self._history = history
        self._tz = tz

    def optimize(self, now: datetime) -> list[str]:
        """Run one optimization pass. Returns the ids of adjusted tasks."""
        logger.info("Optimizing schedules...")
        adjusted: list[str] = []

        for task in self._repository.list(lambda t: t.failure_count > FAILURE_THRESHOLD):
            failures = self._history.failures_for(task.id, FAILURE_SAMPLE)
            if not failures:
                continue

            hours = [f.timestamp.astimezone(self._tz).hour for f in failures]
            worst_hour = most_common(hours)
            if self._shift(task, worst_hour, now):
                adjusted.append(task.id)

        if adjusted:
            self._repository.flush()
        logger.info("Schedule optimization adjusted %d task(s)", len(adjusted))
        return adjusted

    def _shift(self, task: Task, worst_hour: int, now: datetime) -> bool:
        schedule = task.schedule
        if not isinstance(schedule, RecurringSchedule) or schedule.hour is None:
            return False
        if schedule.hour != worst_hour:
            return False

        schedule.hour = (worst_hour + HOUR_SHIFT) % 24
        task.next_execution = next_execution(task, now)
        logger.info(
            "Adjusted %s schedule to avoid hour %d (now %02d:%02d)",
            task.name, worst_hour, schedule.hour, schedule.minute,
        )
        return True
