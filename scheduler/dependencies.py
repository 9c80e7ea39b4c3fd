"""Dependency resolver -- have a task's prerequisites completed?"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from core.models.tasks import Task

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Checks prerequisite tasks by id.

    An unknown dependency id is treated as satisfied. A typo in a dependency
    id therefore silently becomes a no-op; it is logged so it can be spotted.
    """

    def __init__(self, lookup: Callable[[str], Task | None]) -> None:
        self._lookup = lookup

    def unmet(self, task: Task, now: datetime) -> list[str]:
        """Return the ids of dependencies that block this task (empty if none)."""
        blocking: list[str] = []
        max_age = task.constraints.dependency_max_age

        for dep_id in task.dependencies:
            dep = self._lookup(dep_id)
            if dep is None:
                logger.debug("Task %s depends on unknown task %s; ignoring", task.id, dep_id)
                continue
            if dep.status != "completed":
                blocking.append(dep_id)
                continue
            if max_age is not None:
                if dep.last_execution is None:
                    blocking.append(dep_id)
                elif (now - dep.last_execution).total_seconds() > max_age:
                    blocking.append(dep_id)

        return blocking

    def satisfied(self, task: Task, now: datetime) -> bool:
        return not self.unmet(task, now)
