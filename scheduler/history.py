"""History log -- bounded ring of execution outcomes."""

from __future__ import annotations

import logging
from collections import deque

from core.models.tasks import ExecutionRecord
from core.protocols import PersistenceService

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


class HistoryLog:
    """Append-only execution history; the oldest record is evicted first."""

    def __init__(
        self,
        limit: int = DEFAULT_HISTORY_LIMIT,
        persistence: PersistenceService | None = None,
    ) -> None:
        self._records: deque[ExecutionRecord] = deque(maxlen=limit)
        self._persistence = persistence

    @property
    def limit(self) -> int:
        return self._records.maxlen or 0

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: ExecutionRecord) -> None:
        self._records.append(record)

    def records(self) -> list[ExecutionRecord]:
        return list(self._records)

    def for_task(self, task_id: str, limit: int | None = None) -> list[ExecutionRecord]:
        matches = [r for r in self._records if r.task_id == task_id]
        return matches[-limit:] if limit else matches

    def failures_for(self, task_id: str, limit: int = 10) -> list[ExecutionRecord]:
        """Most recent failure records for a task, oldest first."""
        failures = [r for r in self._records if r.task_id == task_id and not r.success]
        return failures[-limit:]

    def summary(self) -> dict[str, int]:
        successful = sum(1 for r in self._records if r.success)
        return {
            "total": len(self._records),
            "successful": successful,
            "failed": len(self._records) - successful,
        }

    def load(self, records: list[ExecutionRecord]) -> None:
        self._records.clear()
        self._records.extend(records)

    def flush(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.save_history(self.records())
        except Exception:
            logger.exception("Failed to persist execution history")
