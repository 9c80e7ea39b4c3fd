from datetime import datetime, timedelta, timezone

from scheduler.dependencies import DependencyResolver

NOW = datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc)


def resolver_for(*tasks):
    by_id = {t.id: t for t in tasks}
    return DependencyResolver(by_id.get)


def test_no_dependencies_is_satisfied(make_task):
    task = make_task()
    assert resolver_for(task).satisfied(task, NOW)


def test_unknown_dependency_is_ignored(make_task):
    task = make_task(dependencies=["task_doesnotexist"])
    assert resolver_for(task).unmet(task, NOW) == []


def test_pending_dependency_blocks(make_task):
    dep = make_task(name="dep")
    task = make_task(dependencies=[dep.id])
    assert resolver_for(dep, task).unmet(task, NOW) == [dep.id]


def test_completed_dependency_satisfies(make_task):
    dep = make_task(name="dep", status="completed", last_execution=NOW - timedelta(hours=5))
    task = make_task(dependencies=[dep.id])
    assert resolver_for(dep, task).satisfied(task, NOW)


def test_stale_dependency_blocks_when_max_age_set(make_task):
    dep = make_task(name="dep", status="completed", last_execution=NOW - timedelta(minutes=20))
    fresh = make_task(dependencies=[dep.id], constraints={"dependency_max_age": "30m"})
    strict = make_task(dependencies=[dep.id], constraints={"dependency_max_age": 600})

    resolver = resolver_for(dep, fresh, strict)
    assert resolver.satisfied(fresh, NOW)
    assert resolver.unmet(strict, NOW) == [dep.id]


def test_completed_without_last_execution_blocks_under_max_age(make_task):
    dep = make_task(name="dep", status="completed")
    task = make_task(dependencies=[dep.id], constraints={"dependency_max_age": 60})
    assert not resolver_for(dep, task).satisfied(task, NOW)
