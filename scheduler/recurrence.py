"""Recurrence calculator -- when should a task run next? No external dependencies.

Supported schedules:
    once          -> schedule.time, if still in the future
    hourly        -> every hour at :minute
    daily         -> every day at hour:minute
    weekly        -> every day_of_week (0=Sunday) at hour:minute
    monthly       -> every month on `day` at hour:minute (clamped to month length)
    interval      -> from_time + interval seconds
    conditional   -> re-check in CONDITIONAL_RECHECK

Every non-None result is strictly after `from_time`, so a due task can
never be rescheduled onto the instant it just ran at. Calendar steps
are taken in wall-clock time and compared as real instants, so a time in a
DST gap moves forward by the gap.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

from core.models.tasks import (
    ConditionalSchedule,
    OnceSchedule,
    RecurringSchedule,
    Schedule,
    Task,
)

CONDITIONAL_RECHECK = timedelta(seconds=60)


def next_execution(task: Task, from_time: datetime) -> datetime | None:
    """Next execution instant for a task, or None if it should not run again."""
    if not task.enabled:
        return None
    return next_after(task.schedule, from_time)


def next_after(schedule: Schedule, from_time: datetime) -> datetime | None:
    """Compute the next instant strictly after `from_time` for a schedule."""
    if isinstance(schedule, OnceSchedule):
        at = _aware(schedule.time, from_time)
        return at if _later(at, from_time) else None

    if isinstance(schedule, ConditionalSchedule):
        return from_time + CONDITIONAL_RECHECK

    if isinstance(schedule, RecurringSchedule):
        return _next_recurring(schedule, from_time)

    return None


def _next_recurring(schedule: RecurringSchedule, from_time: datetime) -> datetime | None:
    if schedule.frequency == "interval":
        return _localize(_utc(from_time) + timedelta(seconds=schedule.interval), from_time)

    minute = schedule.minute
    hour = schedule.hour or 0

    if schedule.frequency == "hourly":
        # Step in UTC so the repeated hour after a DST fall-back still fires.
        start = _utc(from_time)
        candidate = _utc(_resolve(from_time.replace(minute=minute, second=0, microsecond=0)))
        while candidate <= start:
            candidate += timedelta(hours=1)
        return _localize(candidate, from_time)

    if schedule.frequency == "daily":
        candidate = from_time.replace(hour=hour, minute=minute, second=0, microsecond=0)
        while not _later(candidate, from_time):
            candidate += timedelta(days=1)
        return _resolve(candidate)

    if schedule.frequency == "weekly":
        candidate = from_time.replace(hour=hour, minute=minute, second=0, microsecond=0)
        candidate += timedelta(days=(schedule.day_of_week - _sunday_based(from_time)) % 7)
        while not _later(candidate, from_time):
            candidate += timedelta(days=7)
        return _resolve(candidate)

    if schedule.frequency == "monthly":
        year, month = from_time.year, from_time.month
        while True:
            candidate = _month_instant(from_time, year, month, schedule.day, hour, minute)
            if _later(candidate, from_time):
                return _resolve(candidate)
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)

    return None


def _month_instant(
    ref: datetime, year: int, month: int, day: int, hour: int, minute: int,
) -> datetime:
    """`day` of the given month, clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return ref.replace(
        year=year,
        month=month,
        day=min(day, last_day),
        hour=hour,
        minute=minute,
        second=0,
        microsecond=0,
    )


def _sunday_based(dt: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return dt.isoweekday() % 7


def _aware(dt: datetime, ref: datetime) -> datetime:
    """Interpret naive datetimes in the reference instant's timezone."""
    if dt.tzinfo is None and ref.tzinfo is not None:
        return dt.replace(tzinfo=ref.tzinfo)
    return dt


def _utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc) if dt.tzinfo is not None else dt


def _later(candidate: datetime, from_time: datetime) -> bool:
    """Compare real instants; same-zone comparison would use wall-clock time."""
    return _utc(_resolve(candidate)) > _utc(from_time)


def _resolve(dt: datetime) -> datetime:
    """Map a wall-clock time that falls in a DST gap onto a real instant."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).astimezone(dt.tzinfo)


def _localize(dt: datetime, ref: datetime) -> datetime:
    return dt.astimezone(ref.tzinfo) if ref.tzinfo is not None else dt
