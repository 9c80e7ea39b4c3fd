"""Scheduler runner -- owns the task pipeline and its periodic loops.

Three tickers drive everything:
1. scan: every enabled pending task whose next_execution has passed is
   checked against its conditions, then offered to the queue in descending
   priority order (constraints, dependencies, conflicts)
2. drain: retries whose delay has elapsed jump to the queue head, then at most
   one entry is popped and executed
3. optimize: recurring tasks that keep failing at the same hour are moved

scan_once / drain_once / optimize_once are public so the pipeline can be
driven step by step under a simulated clock.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from core.bus import AsyncIOBus
from core.duration import to_seconds
from core.models.events import Event, EventTypes
from core.models.tasks import TASK_STATUSES, ExecutionRecord, QueueEntry, Task
from core.protocols import PersistenceService
from core.registry import PluginRegistry
from core.time_context import TimeContext
from scheduler.actions import ActionDispatcher
from scheduler.conditions import ConditionEvaluator
from scheduler.conflicts import ACTIVE_STATUSES, ConflictResolver
from scheduler.constraints import ConstraintChecker
from scheduler.dependencies import DependencyResolver
from scheduler.executor import Executor
from scheduler.history import DEFAULT_HISTORY_LIMIT, HistoryLog
from scheduler.optimizer import ScheduleOptimizer
from scheduler.queue import ExecutionQueue
from scheduler.recurrence import CONDITIONAL_RECHECK
from scheduler.repository import TaskRepository
from scheduler.ticker import Ticker

logger = logging.getLogger(__name__)


class Scheduler:
    """Task scheduler: repository, queue, executor and the loops around them.

    Usage:
        scheduler = Scheduler(registry=registry, bus=bus, clock=TimeContext.live("Europe/Amsterdam"))
        await scheduler.start()
        task = await scheduler.create_task({...})
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: PluginRegistry,
        bus: AsyncIOBus,
        clock: TimeContext | None = None,
        persistence: PersistenceService | None = None,
        scan_interval: float = 60,
        drain_interval: float = 10,
        optimize_interval: float = 86400,
        deferral_delay: float = 300,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._clock = clock or TimeContext.live()
        self._persistence = persistence if persistence is not None else registry.first("persistence")
        self._deferral_delay = timedelta(seconds=deferral_delay)

        self.queue = ExecutionQueue()
        self.history = HistoryLog(limit=history_limit, persistence=self._persistence)
        self.repository = TaskRepository(self._clock, queue=self.queue, persistence=self._persistence)

        self._conditions = ConditionEvaluator(registry)
        self._constraints = ConstraintChecker(registry)
        self._dependencies = DependencyResolver(self.repository.get)
        self._conflicts = ConflictResolver()
        self._executor = Executor(
            repository=self.repository,
            queue=self.queue,
            history=self.history,
            dispatcher=ActionDispatcher(registry, bus),
            registry=registry,
            bus=bus,
            clock=self._clock,
        )
        self._optimizer = ScheduleOptimizer(self.repository, self.history, self._clock.tz)

        self._tickers = [
            Ticker("scan", scan_interval, self.scan_once, run_immediately=True),
            Ticker("drain", drain_interval, self.drain_once),
            Ticker("optimize", optimize_interval, self.optimize_once),
        ]
        self._started = False

    @property
    def clock(self) -> TimeContext:
        return self._clock

    @property
    def running(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore persisted state and start the periodic loops."""
        if self._started:
            return
        self.load_state()
        for ticker in self._tickers:
            await ticker.start()
        self._started = True
        logger.info("Scheduler started with %d task(s)", len(self.repository))

    async def stop(self) -> None:
        for ticker in self._tickers:
            await ticker.stop()
        await self.wait_for_notifications()
        self.repository.flush()
        self.history.flush()
        self._started = False
        logger.info("Scheduler stopped")

    async def wait_for_notifications(self) -> None:
        """Wait for failure notifications still being delivered."""
        await self._executor.wait_for_notifications()

    def load_state(self) -> None:
        if self._persistence is None:
            return
        try:
            tasks = self._persistence.load_tasks()
            records = self._persistence.load_history()
        except Exception:
            logger.exception("Failed to load persisted scheduler state")
            return
        loaded = self.repository.load(tasks)
        self.history.load(records)
        logger.info("Loaded %d task(s) and %d history record(s)", loaded, len(records))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_task(self, task_data: dict[str, Any] | Task) -> Task:
        """Validate and store a new task. Raises TaskValidationError."""
        task = self.repository.create(task_data)
        await self._publish(EventTypes.TASK_CREATED, task, {
            "type": task.type,
            "next_execution": _iso(task),
        })
        return task

    async def cancel_task(self, task_id: str) -> Task:
        """Cancel a task. Raises TaskNotFoundError."""
        task = self.repository.cancel(task_id)
        await self._publish(EventTypes.TASK_CANCELLED, task, {"reason": "cancelled"})
        return task

    async def reschedule_task(self, task_id: str, delay: str | float | timedelta) -> Task:
        return self.repository.reschedule(task_id, to_seconds(delay))

    async def set_task_enabled(self, task_id: str, enabled: bool) -> Task:
        return self.repository.set_enabled(task_id, enabled)

    def get_task(self, task_id: str) -> Task | None:
        return self.repository.get(task_id)

    def list_tasks(self, status: str | None = None) -> list[Task]:
        if status is None:
            return self.repository.list()
        return self.repository.by_status(status)

    def get_history(self, task_id: str | None = None, limit: int | None = None) -> list[ExecutionRecord]:
        if task_id:
            return self.history.for_task(task_id, limit)
        records = self.history.records()
        return records[-limit:] if limit else records

    def get_statistics(self) -> dict[str, Any]:
        tasks = self.repository.list()
        by_status = {status: 0 for status in TASK_STATUSES}
        for task in tasks:
            by_status[task.status] += 1
        return {
            "total": len(tasks),
            "by_status": by_status,
            "queue_length": len(self.queue),
            "delayed_retries": self.queue.delayed_count,
            "execution_history": self.history.summary(),
        }

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    async def scan_once(self) -> list[str]:
        """Offer every due task to the queue. Returns the ids that were queued."""
        now = self._clock.now()
        due: list[Task] = []

        for task in self.repository.by_status("pending"):
            if not task.enabled or task.next_execution is None or task.next_execution > now:
                continue
            if not await self._conditions.all_met(task, now):
                logger.debug("Conditions not met for %s", task.name)
                if task.type == "conditional":
                    task.next_execution = now + CONDITIONAL_RECHECK
                continue
            due.append(task)

        due.sort(key=lambda t: t.priority, reverse=True)

        queued: list[str] = []
        for task in due:
            if await self._offer(task, now):
                queued.append(task.id)

        if due:
            self.repository.flush()
        return queued

    async def _offer(self, task: Task, now) -> bool:
        """Constraints, then dependencies, then conflicts, then the queue."""
        while True:
            result = await self._constraints.check(task, now, self.repository.running_count())
            if not result.passed:
                await self._defer(task, now, result.summary)
                return False

            blocking = self._dependencies.unmet(task, now)
            if blocking:
                logger.debug("Task %s waiting on dependencies: %s", task.name, ", ".join(blocking))
                return False

            decision = self._conflicts.decide(task, self.repository.by_status(*ACTIVE_STATUSES))
            if decision.outcome == "defer":
                await self._defer(task, now, decision.reason)
                return False
            if decision.outcome == "preempt":
                logger.info("Task %s preempts %s", task.name, ", ".join(decision.conflicting))
                for other_id in decision.conflicting:
                    cancelled = self.repository.cancel(other_id)
                    await self._publish(EventTypes.TASK_CANCELLED, cancelled, {
                        "reason": "preempted",
                        "preempted_by": task.id,
                    })
                continue

            self.queue.push(QueueEntry(task=task, enqueued_at=now))
            task.status = "queued"
            logger.info("Queued task: %s (priority %d)", task.name, task.priority)
            await self._publish(EventTypes.TASK_QUEUED, task, {"priority": task.priority})
            return True

    async def _defer(self, task: Task, now, reason: str) -> None:
        task.next_execution = now + self._deferral_delay
        task.status = "pending"
        logger.info("Deferred task %s until %s: %s", task.name, task.next_execution, reason)
        await self._publish(EventTypes.TASK_DEFERRED, task, {
            "reason": reason,
            "next_execution": _iso(task),
        })

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain_once(self) -> ExecutionRecord | None:
        """Promote ready retries and execute at most one queue entry."""
        now = self._clock.now()
        for entry in self.queue.promote_ready(now):
            if entry.task.status != "cancelled":
                entry.task.status = "queued"

        entry = self.queue.pop()
        if entry is None:
            return None
        if entry.task.status == "cancelled":
            logger.debug("Dropping queue entry for cancelled task %s", entry.task.id)
            return None
        return await self._executor.execute(entry)

    # ------------------------------------------------------------------
    # Optimize
    # ------------------------------------------------------------------

    async def optimize_once(self) -> list[str]:
        adjusted = self._optimizer.optimize(self._clock.now())
        if adjusted:
            await self._bus.publish(Event(
                type=EventTypes.SCHEDULE_OPTIMIZED,
                source="scheduler",
                payload={"task_ids": adjusted},
            ))
        return adjusted

    async def _publish(self, event_type: str, task: Task, payload: dict) -> None:
        await self._bus.publish(Event(
            type=event_type,
            source="scheduler",
            payload={"task_id": task.id, "task_name": task.name, "status": task.status, **payload},
        ))


def _iso(task: Task) -> str | None:
    return task.next_execution.isoformat() if task.next_execution else None
