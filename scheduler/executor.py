"""Executor -- runs one queue entry under a timeout with bounded retry.

Every execution resolves to completed, retrying or failed within the task's
timeout. A timed-out action is left to finish on its own; its eventual
result is neither awaited nor reported.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from datetime import timedelta

from core.bus import AsyncIOBus
from core.models.events import Event, EventTypes
from core.models.tasks import ExecutionRecord, QueueEntry, Task
from core.registry import PluginRegistry
from core.time_context import TimeContext
from scheduler.actions import ActionDispatcher
from scheduler.errors import TaskTimeoutError
from scheduler.history import HistoryLog
from scheduler.queue import ExecutionQueue
from scheduler.recurrence import next_execution
from scheduler.repository import TaskRepository

logger = logging.getLogger(__name__)


def _discard_late_result(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Timed-out action finished late with error: %s", exc)


class Executor:
    def __init__(
        self,
        repository: TaskRepository,
        queue: ExecutionQueue,
        history: HistoryLog,
        dispatcher: ActionDispatcher,
        registry: PluginRegistry,
        bus: AsyncIOBus,
        clock: TimeContext,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._history = history
        self._dispatcher = dispatcher
        self._registry = registry
        self._bus = bus
        self._clock = clock
        self._notifications: set[asyncio.Task] = set()

    async def execute(self, entry: QueueEntry) -> ExecutionRecord | None:
        """Execute one attempt of a task. Returns the history record written."""
        task = entry.task
        if task.status == "cancelled":
            logger.info("Skipping cancelled task %s", task.name)
            return None

        logger.info("Executing task: %s (attempt %d)", task.name, entry.attempt + 1)
        task.status = "running"
        task.last_execution = self._clock.now()
        started = time.perf_counter()

        error: Exception | None = None
        try:
            await self._run_with_timeout(task)
        except Exception as exc:
            error = exc

        duration_ms = (time.perf_counter() - started) * 1000
        record = ExecutionRecord(
            task_id=task.id,
            task_name=task.name,
            timestamp=self._clock.now(),
            success=error is None,
            error_message=None if error is None else (str(error) or type(error).__name__),
            duration_ms=round(duration_ms, 3),
            attempt=entry.attempt,
        )
        self._history.append(record)

        if task.status == "cancelled":
            # Cancelled while in flight: keep the outcome, leave the status alone.
            logger.info("Task %s was cancelled while running (success=%s)", task.name, record.success)
        elif error is None:
            await self._on_success(task, record)
        else:
            await self._on_failure(task, entry, record)

        self._repository.flush()
        self._history.flush()
        return record

    async def _run_with_timeout(self, task: Task) -> None:
        action = asyncio.ensure_future(self._dispatcher.perform(task))
        try:
            done, _ = await asyncio.wait({action}, timeout=task.timeout)
        except asyncio.CancelledError:
            action.cancel()
            raise
        if action not in done:
            action.add_done_callback(_discard_late_result)
            raise TaskTimeoutError(task.id, task.timeout)
        action.result()

    async def _on_success(self, task: Task, record: ExecutionRecord) -> None:
        task.status = "completed"
        task.execution_count += 1
        task.failure_count = 0
        logger.info("Task %s completed successfully", task.name)

        self._rearm(task)

        await self._publish(EventTypes.TASK_COMPLETED, task, {
            "duration_ms": record.duration_ms,
            "next_execution": task.next_execution.isoformat() if task.next_execution else None,
        })

    async def _on_failure(self, task: Task, entry: QueueEntry, record: ExecutionRecord) -> None:
        task.failure_count += 1
        logger.error("Task %s failed: %s", task.name, record.error_message)

        if entry.attempt < task.max_retries:
            now = self._clock.now()
            retry_at = now + timedelta(seconds=task.retry_delay)
            self._queue.push_delayed(
                QueueEntry(task=task, enqueued_at=now, attempt=entry.attempt + 1),
                retry_at,
            )
            task.status = "retrying"
            logger.info("Retrying task %s at %s", task.name, retry_at)
            await self._publish(EventTypes.TASK_RETRYING, task, {
                "attempt": entry.attempt + 1,
                "retry_at": retry_at.isoformat(),
                "error": record.error_message,
            })
            return

        task.status = "failed"
        logger.warning(
            "Task %s failed after %d attempt(s)", task.name, entry.attempt + 1,
        )
        await self._publish(EventTypes.TASK_FAILED, task, {
            "attempts": entry.attempt + 1,
            "error": record.error_message,
        })

        self._rearm(task)
        self._notify_failure(task, record.error_message or "unknown error")

    def _rearm(self, task: Task) -> None:
        """Repeating tasks go back to pending on their next instant; once tasks stay terminal."""
        if task.repeats:
            task.next_execution = next_execution(task, self._clock.now())
            task.status = "pending"
        else:
            task.next_execution = None

    def _notify_failure(self, task: Task, error: str) -> None:
        """Fire every notifier in the background; a slow one never blocks the drain tick."""
        message = f'Scheduled task "{task.name}" failed: {error}'
        for notifier in self._registry.get_all("notifier"):
            name = getattr(notifier, "name", "?")
            pending = asyncio.create_task(notifier.notify(message), name=f"notify:{name}")
            self._notifications.add(pending)
            pending.add_done_callback(functools.partial(self._notification_done, name))

    def _notification_done(self, name: str, pending: asyncio.Task) -> None:
        self._notifications.discard(pending)
        if pending.cancelled():
            return
        exc = pending.exception()
        if exc is not None:
            logger.error("Notifier %s failed: %s", name, exc)

    async def wait_for_notifications(self) -> None:
        """Wait for notifications still in flight."""
        if self._notifications:
            await asyncio.gather(*self._notifications, return_exceptions=True)

    async def _publish(self, event_type: str, task: Task, payload: dict) -> None:
        await self._bus.publish(Event(
            type=event_type,
            source="executor",
            payload={"task_id": task.id, "task_name": task.name, "status": task.status, **payload},
        ))
