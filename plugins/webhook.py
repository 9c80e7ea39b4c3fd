"""Webhook notifier -- POSTs failure notifications to an HTTP endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "webhook",
    "display_name": "Webhook",
    "description": "POST notifications as JSON to a URL",
    "category": "notifier",
    "protocols": ["notifier"],
    "class_name": "WebhookNotifier",
    "pip_dependencies": [],
    "config_fields": [
        {
            "key": "url",
            "label": "Webhook URL",
            "type": "string",
            "required": True,
            "placeholder": "https://example.com/hooks/homesched",
        },
    ],
}


class WebhookNotifier:
    """Implements the NotificationService protocol."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=15.0, headers=headers or {})

    @property
    def name(self) -> str:
        return "webhook"

    async def notify(self, message: str) -> None:
        response = await self._client.post(self._url, json={
            "text": message,
            "source": "homesched",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        if response.status_code >= 400:
            raise RuntimeError(f"Webhook error {response.status_code}: {response.text[:200]}")
        logger.info("Delivered notification to webhook")

    async def aclose(self) -> None:
        await self._client.aclose()
