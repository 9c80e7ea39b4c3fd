from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from core.models.tasks import ExecutionRecord
from core.time_context import TimeContext
from scheduler.history import HistoryLog
from scheduler.optimizer import ScheduleOptimizer, most_common
from scheduler.repository import TaskRepository

NOW = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


def record(task_id="task_a", success=True, when=NOW, attempt=0):
    return ExecutionRecord(
        task_id=task_id, task_name=task_id, timestamp=when, success=success, attempt=attempt,
    )


def test_history_never_exceeds_its_limit():
    history = HistoryLog(limit=1000)
    for i in range(1001):
        history.append(record(task_id=f"task_{i}"))
    assert len(history) == 1000
    ids = [r.task_id for r in history.records()]
    assert "task_0" not in ids
    assert ids[0] == "task_1"
    assert ids[-1] == "task_1000"


def test_for_task_and_failures():
    history = HistoryLog()
    history.append(record("a", success=False))
    history.append(record("b", success=False))
    history.append(record("a", success=True))
    history.append(record("a", success=False, attempt=1))

    assert len(history.for_task("a")) == 3
    assert len(history.for_task("a", limit=1)) == 1
    assert [r.attempt for r in history.failures_for("a")] == [0, 1]
    assert history.summary() == {"total": 4, "successful": 1, "failed": 3}


def test_flush_swallows_persistence_errors():
    persistence = MagicMock()
    persistence.save_history.side_effect = OSError("disk full")
    history = HistoryLog(persistence=persistence)
    history.append(record())
    history.flush()
    persistence.save_history.assert_called_once()


def test_most_common_prefers_first_to_reach_max():
    assert most_common([9, 8, 8, 9]) == 8
    assert most_common([3, 3, 4, 4]) == 3
    assert most_common([]) is None


def _optimizer_fixture(schedule, failure_count=4, failure_hours=(8, 8, 8)):
    clock = TimeContext.at(NOW)
    repository = TaskRepository(clock)
    task = repository.create({
        "name": "flaky",
        "type": "recurring",
        "schedule": schedule,
        "action": {"type": "log", "message": "x"},
    })
    task.failure_count = failure_count
    history = HistoryLog()
    for hour in failure_hours:
        history.append(record(task.id, success=False, when=NOW.replace(hour=hour) - timedelta(days=1)))
    return ScheduleOptimizer(repository, history, clock.tz), task


def test_optimizer_shifts_failing_hour():
    optimizer, task = _optimizer_fixture({"frequency": "daily", "hour": 8, "minute": 15})
    assert optimizer.optimize(NOW) == [task.id]
    assert task.schedule.hour == 10
    assert task.next_execution == NOW.replace(hour=10, minute=15)


def test_optimizer_wraps_past_midnight():
    optimizer, task = _optimizer_fixture(
        {"frequency": "daily", "hour": 23}, failure_hours=(23, 23),
    )
    optimizer.optimize(NOW)
    assert task.schedule.hour == 1


def test_optimizer_ignores_tasks_below_threshold():
    optimizer, task = _optimizer_fixture(
        {"frequency": "daily", "hour": 8}, failure_count=3,
    )
    assert optimizer.optimize(NOW) == []
    assert task.schedule.hour == 8


def test_optimizer_ignores_other_hours_and_unpinned_schedules():
    optimizer, task = _optimizer_fixture(
        {"frequency": "daily", "hour": 6}, failure_hours=(8, 8, 6),
    )
    assert optimizer.optimize(NOW) == []
    assert task.schedule.hour == 6

    optimizer, task = _optimizer_fixture({"frequency": "interval", "interval": 600})
    assert optimizer.optimize(NOW) == []
