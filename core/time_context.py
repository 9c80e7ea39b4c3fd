"""TimeContext -- the single source of "now" for the scheduler.

In live mode, now() is the real wall clock in the scheduler's timezone.
In simulation mode, now() is a fixed instant that only moves when advanced,
which makes due-task scans and retry delays deterministic.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field


class TimeContext(BaseModel):
    """Controls what the scheduler considers the current instant."""

    mode: Literal["live", "simulation"] = "live"
    timezone_name: str = "UTC"
    current_time: datetime | None = Field(default=None)

    @classmethod
    def live(cls, timezone_name: str = "UTC") -> TimeContext:
        """Create a live-mode context that follows the real clock."""
        return cls(mode="live", timezone_name=timezone_name)

    @classmethod
    def at(cls, dt: datetime, timezone_name: str | None = None) -> TimeContext:
        """Create a simulation-mode context frozen at a specific instant."""
        if timezone_name is None:
            timezone_name = getattr(dt.tzinfo, "key", None) or "UTC"
        ctx = cls(mode="simulation", timezone_name=timezone_name)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=ctx.tz)
        ctx.current_time = dt.astimezone(ctx.tz)
        return ctx

    @property
    def tz(self) -> ZoneInfo | timezone:
        if self.timezone_name.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone_name)

    def now(self) -> datetime:
        if self.mode == "simulation":
            if self.current_time is None:
                raise RuntimeError("Simulation time not set")
            return self.current_time
        return datetime.now(self.tz)

    def advance(self, delta: timedelta | float) -> datetime:
        """Move simulated time forward by a timedelta or a number of seconds."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        return self.advance_to(self.now() + delta)

    def advance_to(self, dt: datetime) -> datetime:
        """Advance the simulated time (only valid in simulation mode)."""
        if self.mode != "simulation":
            raise RuntimeError("Cannot advance time in live mode")
        self.current_time = dt.astimezone(self.tz)
        return self.current_time

    @property
    def is_simulation(self) -> bool:
        return self.mode == "simulation"
