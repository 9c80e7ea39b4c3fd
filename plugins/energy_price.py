"""Energy price feed -- fetches the current electricity price over HTTP.

The endpoint must return a JSON object; the price and level are read from
configurable top-level fields. Readings are cached for `cache_ttl` seconds
so a scan over many price-constrained tasks makes one request.
"""

from __future__ import annotations

import logging
import time

import httpx

from core.models.home import EnergyPrice

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "energy_price",
    "display_name": "Energy price feed",
    "description": "Current electricity price from an HTTP JSON endpoint",
    "category": "energy_price",
    "protocols": ["energy_price"],
    "class_name": "HttpEnergyPriceService",
    "pip_dependencies": [],
    "config_fields": [
        {
            "key": "url",
            "label": "Feed URL",
            "type": "string",
            "required": True,
            "description": "Endpoint returning the current price as JSON",
        },
        {
            "key": "api_key",
            "label": "API Key",
            "type": "secret",
            "required": False,
            "env_var": "ENERGY_PRICE_API_KEY",
            "description": "Sent as a Bearer token when set",
        },
    ],
}


class HttpEnergyPriceService:
    """Implements the EnergyPriceService protocol."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        price_field: str = "price",
        level_field: str = "level",
        cache_ttl: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._price_field = price_field
        self._level_field = level_field
        self._cache_ttl = cache_ttl
        headers = {"User-Agent": "homesched/0.1"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=15.0, headers=headers)
        self._cached: EnergyPrice | None = None
        self._cached_at = 0.0

    @property
    def name(self) -> str:
        return "energy_price"

    async def get_current_price(self) -> EnergyPrice:
        if self._cached is not None and time.monotonic() - self._cached_at < self._cache_ttl:
            return self._cached

        response = await self._client.get(self._url)
        if response.status_code != 200:
            raise RuntimeError(f"Energy price feed returned HTTP {response.status_code}")

        data = response.json()
        if self._price_field not in data:
            raise RuntimeError(f"Energy price feed response has no '{self._price_field}' field")

        reading = EnergyPrice(
            price=float(data[self._price_field]),
            level=str(data.get(self._level_field, "normal")),
            currency=str(data.get("currency", "EUR")),
        )
        self._cached = reading
        self._cached_at = time.monotonic()
        logger.debug("Energy price: %.4f (%s)", reading.price, reading.level)
        return reading

    async def aclose(self) -> None:
        await self._client.aclose()
