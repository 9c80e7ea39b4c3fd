"""Execution queue -- FIFO holding area between "due" and "executed".

Entries are processed in insertion order. Retries wait in a separate
delayed area until their retry delay has elapsed, then jump to the head of
the FIFO. The queue is not priority ordered: priority only matters when
tasks conflict.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime

from core.models.tasks import QueueEntry


class ExecutionQueue:
    def __init__(self) -> None:
        self._entries: deque[QueueEntry] = deque()
        self._delayed: list[tuple[datetime, QueueEntry]] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def delayed_count(self) -> int:
        return len(self._delayed)

    def push(self, entry: QueueEntry) -> None:
        self._entries.append(entry)

    def pop(self) -> QueueEntry | None:
        if not self._entries:
            return None
        return self._entries.popleft()

    def entries(self) -> list[QueueEntry]:
        return list(self._entries)

    def contains(self, task_id: str) -> bool:
        return any(e.task.id == task_id for e in self._entries) or any(
            e.task.id == task_id for _, e in self._delayed
        )

    def remove_task(self, task_id: str) -> int:
        """Drop every queued or delayed entry for a task. Returns how many were removed."""
        before = len(self._entries) + len(self._delayed)
        self._entries = deque(e for e in self._entries if e.task.id != task_id)
        self._delayed = [(at, e) for at, e in self._delayed if e.task.id != task_id]
        return before - len(self._entries) - len(self._delayed)

    def push_delayed(self, entry: QueueEntry, ready_at: datetime) -> None:
        self._delayed.append((ready_at, entry))

    def promote_ready(self, now: datetime) -> list[QueueEntry]:
        """Move delayed entries whose time has come to the FIFO head, earliest first."""
        ready = sorted(
            ((at, e) for at, e in self._delayed if at <= now),
            key=lambda item: item[0],
        )
        if not ready:
            return []
        self._delayed = [(at, e) for at, e in self._delayed if at > now]
        promoted = [e for _, e in ready]
        self._entries.extendleft(reversed(promoted))
        return promoted

    def clear(self) -> None:
        self._entries.clear()
        self._delayed.clear()
