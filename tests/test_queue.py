from datetime import datetime, timedelta, timezone

from core.models.tasks import QueueEntry
from scheduler.queue import ExecutionQueue

NOW = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


def entry(task, attempt=0):
    return QueueEntry(task=task, enqueued_at=NOW, attempt=attempt)


def test_fifo_order(make_task):
    queue = ExecutionQueue()
    first, second = make_task(name="a"), make_task(name="b", priority=10)
    queue.push(entry(first))
    queue.push(entry(second))
    assert len(queue) == 2
    assert queue.pop().task is first
    assert queue.pop().task is second
    assert queue.pop() is None


def test_remove_task_clears_both_areas(make_task):
    queue = ExecutionQueue()
    task, other = make_task(), make_task()
    queue.push(entry(task))
    queue.push(entry(other))
    queue.push_delayed(entry(task, attempt=1), NOW + timedelta(minutes=5))

    assert queue.contains(task.id)
    assert queue.remove_task(task.id) == 2
    assert not queue.contains(task.id)
    assert [e.task for e in queue.entries()] == [other]
    assert queue.delayed_count == 0


def test_promote_ready_puts_retries_first_in_time_order(make_task):
    queue = ExecutionQueue()
    waiting = make_task(name="waiting")
    late, early, future = make_task(name="late"), make_task(name="early"), make_task(name="future")
    queue.push(entry(waiting))
    queue.push_delayed(entry(late, 1), NOW + timedelta(seconds=20))
    queue.push_delayed(entry(early, 1), NOW + timedelta(seconds=10))
    queue.push_delayed(entry(future, 1), NOW + timedelta(hours=1))

    promoted = queue.promote_ready(NOW + timedelta(seconds=30))

    assert [e.task.name for e in promoted] == ["early", "late"]
    assert [e.task.name for e in queue.entries()] == ["early", "late", "waiting"]
    assert queue.delayed_count == 1


def test_entries_keep_task_identity(make_task):
    task = make_task()
    queue = ExecutionQueue()
    queue.push(entry(task))
    task.status = "cancelled"
    assert queue.pop().task.status == "cancelled"
