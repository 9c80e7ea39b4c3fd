"""Ticker -- a cancellable periodic trigger on the asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


class Ticker:
    """Runs `callback` every `interval` seconds until stopped.

    Errors raised by the callback are logged and never end the loop.

    Usage:
        ticker = Ticker("scan", 60, scheduler.scan_once)
        await ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Coroutine[Any, Any, Any]],
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self._interval = max(0.01, float(interval))
        self._callback = callback
        self._run_immediately = run_immediately
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"ticker:{self.name}")
        logger.info("Ticker %s started (every %gs)", self.name, self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Ticker %s stopped", self.name)

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while self._running:
            try:
                await self._callback()
            except Exception:
                logger.exception("Error in %s tick", self.name)
            await asyncio.sleep(self._interval)
