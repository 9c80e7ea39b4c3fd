from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.models.tasks import QueueEntry
from core.time_context import TimeContext
from scheduler.errors import TaskNotFoundError, TaskStateError, TaskValidationError
from scheduler.queue import ExecutionQueue
from scheduler.repository import TaskRepository
from tests.helpers import T0, once_at


@pytest.fixture
def queue():
    return ExecutionQueue()


@pytest.fixture
def persistence():
    return MagicMock()


@pytest.fixture
def repository(queue, persistence):
    return TaskRepository(TimeContext.at(T0), queue=queue, persistence=persistence)


def test_create_assigns_id_status_and_next_run(repository, persistence):
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    assert task.id.startswith("task_")
    assert len(task.id) == len("task_") + 12
    assert task.status == "pending"
    assert task.created == T0
    assert task.next_execution == T0 + timedelta(hours=1)
    assert repository.get(task.id) is task
    persistence.save_tasks.assert_called()


def test_create_ignores_caller_lifecycle_fields(repository):
    task = repository.create({
        **once_at(T0 + timedelta(hours=1)),
        "id": "task_mine",
        "status": "completed",
        "execution_count": 7,
    })
    assert task.id != "task_mine"
    assert task.status == "pending"
    assert task.execution_count == 0


def test_ids_are_unique(repository):
    ids = {repository.create(once_at(T0 + timedelta(hours=1))).id for _ in range(200)}
    assert len(ids) == 200


@pytest.mark.parametrize("bad", [
    {"type": "once", "schedule": {"time": T0.isoformat()}, "action": {"type": "log"}},
    {"name": "x", "type": "once", "schedule": {"time": T0.isoformat()}, "action": {"type": "log"}, "priority": 11},
    {"name": "x", "type": "daily", "schedule": {}, "action": {"type": "log"}},
    {"name": "x", "type": "once", "schedule": {"time": "soon"}, "action": {"type": "log"}},
    {"name": "x", "type": "recurring", "schedule": {"frequency": "hourly"}, "action": {"type": "script", "code": "1"}},
    {"name": "x", "type": "recurring", "schedule": {"frequency": "yearly"}, "action": {"type": "log"}},
    {"name": "x", "type": "recurring", "schedule": {"frequency": "hourly"}, "action": {"type": "log"}, "timeout": 0},
])
def test_invalid_task_is_rejected_and_not_stored(repository, bad):
    with pytest.raises(TaskValidationError) as info:
        repository.create(bad)
    assert info.value.errors
    assert len(repository) == 0


def test_disabled_task_has_no_next_run(repository):
    task = repository.create(once_at(T0 + timedelta(hours=1), enabled=False))
    assert task.next_execution is None


def test_conditional_task_without_schedule(repository):
    task = repository.create({
        "name": "when home",
        "type": "conditional",
        "action": {"type": "log", "message": "hi"},
        "conditions": [{"type": "presence", "expected_state": "home"}],
    })
    assert task.next_execution == T0 + timedelta(seconds=60)


def test_require_unknown_raises(repository):
    with pytest.raises(TaskNotFoundError) as info:
        repository.require("task_missing")
    assert "task_missing" in str(info.value)
    assert repository.get("task_missing") is None


def test_cancel_removes_queue_entries(repository, queue):
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    queue.push(QueueEntry(task=task, enqueued_at=T0))
    task.status = "queued"

    repository.cancel(task.id)

    assert task.status == "cancelled"
    assert task.next_execution is None
    assert len(queue) == 0
    assert repository.get(task.id) is task


def test_reschedule_sets_next_and_pending(repository):
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    task.status = "failed"
    repository.reschedule(task.id, 600)
    assert task.next_execution == T0 + timedelta(minutes=10)
    assert task.status == "pending"
    with pytest.raises(TaskNotFoundError):
        repository.reschedule("task_missing", 1)


def test_disable_and_reenable(repository, queue):
    task = repository.create({
        "name": "hourly",
        "type": "recurring",
        "schedule": {"frequency": "hourly", "minute": 30},
        "action": {"type": "log", "message": "tick"},
    })
    queue.push(QueueEntry(task=task, enqueued_at=T0))
    task.status = "queued"

    repository.set_enabled(task.id, False)
    assert task.next_execution is None
    assert task.status == "pending"
    assert len(queue) == 0

    repository.set_enabled(task.id, True)
    assert task.next_execution == T0.replace(minute=30)


def test_cancelled_task_stays_cancelled_when_enabled(repository):
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    repository.cancel(task.id)
    repository.set_enabled(task.id, True)
    assert task.status == "cancelled"
    assert task.next_execution is None


def test_load_resets_in_flight_tasks(repository, make_task):
    running = make_task(status="running", next_execution=None)
    retrying = make_task(status="retrying", next_execution=T0 + timedelta(minutes=5))
    done = make_task(status="completed")

    assert repository.load([running, retrying, done]) == 3
    assert running.status == "pending"
    assert running.next_execution == T0
    assert retrying.status == "pending"
    assert retrying.next_execution == T0 + timedelta(minutes=5)
    assert done.status == "completed"


def test_flush_failure_keeps_memory_state(repository, persistence):
    persistence.save_tasks.side_effect = OSError("read-only")
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    assert repository.get(task.id) is task


HOURLY = {
    "name": "hourly",
    "type": "recurring",
    "schedule": {"frequency": "hourly", "minute": 30},
    "action": {"type": "log", "message": "tick"},
}


def task_in(repository, queue, status):
    """A recurring task in `status`, with the queue entry that status implies."""
    task = repository.create(HOURLY)
    if status == "queued":
        queue.push(QueueEntry(task=task, enqueued_at=T0))
    elif status == "retrying":
        queue.push_delayed(QueueEntry(task=task, enqueued_at=T0, attempt=1), T0 + timedelta(minutes=5))
    task.status = status
    return task


@pytest.mark.parametrize("status", ["cancelled", "running"])
def test_reschedule_rejects_cancelled_and_running(repository, status):
    task = repository.create(once_at(T0 + timedelta(hours=1)))
    task.status = status
    before = task.next_execution

    with pytest.raises(TaskStateError) as info:
        repository.reschedule(task.id, 0)

    assert status in str(info.value)
    assert task.status == status
    assert task.next_execution == before


@pytest.mark.parametrize("status", ["pending", "queued", "retrying", "completed", "failed"])
def test_reschedule_resets_to_pending_and_dequeues(repository, queue, status):
    task = task_in(repository, queue, status)
    repository.reschedule(task.id, 60)
    assert task.status == "pending"
    assert task.next_execution == T0 + timedelta(minutes=1)
    assert not queue.contains(task.id)


@pytest.mark.parametrize("status", ["pending", "queued", "retrying", "running"])
def test_cancel_is_terminal_from_every_live_status(repository, queue, status):
    task = task_in(repository, queue, status)
    repository.cancel(task.id)
    assert task.status == "cancelled"
    assert task.next_execution is None
    assert not queue.contains(task.id)


@pytest.mark.parametrize("status", ["queued", "retrying", "running"])
def test_enable_in_flight_task_changes_nothing(repository, queue, status):
    task = task_in(repository, queue, status)
    queued_before, delayed_before = len(queue), queue.delayed_count
    next_before = task.next_execution

    repository.set_enabled(task.id, True)

    assert task.status == status
    assert task.next_execution == next_before
    assert (len(queue), queue.delayed_count) == (queued_before, delayed_before)


@pytest.mark.parametrize("status", ["pending", "completed", "failed"])
def test_enable_settled_task_recomputes_next_run(repository, queue, status):
    task = task_in(repository, queue, status)
    task.next_execution = None
    repository.set_enabled(task.id, True)
    assert task.status == "pending"
    assert task.next_execution == T0.replace(minute=30)


def test_reenable_disabled_queued_task_does_not_duplicate(repository, queue):
    task = task_in(repository, queue, "queued")
    task.enabled = False
    repository.set_enabled(task.id, True)
    assert task.status == "pending"
    assert len(queue) == 0


@pytest.mark.parametrize("status", ["queued", "retrying"])
def test_disable_waiting_task_dequeues_it(repository, queue, status):
    task = task_in(repository, queue, status)
    repository.set_enabled(task.id, False)
    assert task.status == "pending"
    assert task.next_execution is None
    assert not queue.contains(task.id)


def test_disable_running_task_keeps_it_running(repository, queue):
    task = task_in(repository, queue, "running")
    repository.set_enabled(task.id, False)
    assert task.status == "running"
    assert not task.enabled
    assert task.next_execution is None
