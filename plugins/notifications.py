"""Bus notifier -- turns notifications into notification.sent events.

Anything subscribed to the bus (the JSONL audit log, a UI, an integration)
sees failure notifications without the scheduler knowing about it.
"""

from __future__ import annotations

import logging

from core.bus import AsyncIOBus
from core.models.events import Event, EventTypes

logger = logging.getLogger(__name__)


class BusNotifier:
    """Implements the NotificationService protocol on top of the event bus."""

    def __init__(self, bus: AsyncIOBus) -> None:
        self._bus = bus

    @property
    def name(self) -> str:
        return "bus"

    async def notify(self, message: str) -> None:
        text = str(message or "").strip()
        if not text:
            logger.debug("Ignoring empty notification")
            return
        await self._bus.publish(Event(
            type=EventTypes.NOTIFICATION_SENT,
            source=self.name,
            payload={"text": text},
        ))
