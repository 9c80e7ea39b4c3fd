import json

import httpx
import pytest

from core.bus import AsyncIOBus
from core.models.events import EventTypes
from plugins.energy_price import HttpEnergyPriceService
from plugins.notifications import BusNotifier
from plugins.simulated import SimulatedDevices, SimulatedScenes
from plugins.webhook import WebhookNotifier


@pytest.mark.asyncio
async def test_energy_feed_parses_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"current": 0.18, "tier": "low"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    feed = HttpEnergyPriceService(
        url="https://prices.test/now",
        price_field="current",
        level_field="tier",
        cache_ttl=300,
        client=client,
    )

    first = await feed.get_current_price()
    second = await feed.get_current_price()
    await feed.aclose()

    assert first.price == 0.18
    assert first.level == "low"
    assert second is first
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_energy_feed_errors_raise():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    feed = HttpEnergyPriceService(url="https://prices.test/now", client=client)
    with pytest.raises(RuntimeError):
        await feed.get_current_price()

    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    feed = HttpEnergyPriceService(url="https://prices.test/now", client=client)
    with pytest.raises(RuntimeError):
        await feed.get_current_price()


@pytest.mark.asyncio
async def test_webhook_posts_message():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = WebhookNotifier("https://hooks.test/x", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await notifier.notify("Scheduled task failed")
    await notifier.aclose()

    assert received[0]["text"] == "Scheduled task failed"
    assert received[0]["source"] == "homesched"


@pytest.mark.asyncio
async def test_webhook_error_status_raises():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="nope")))
    notifier = WebhookNotifier("https://hooks.test/x", client=client)
    with pytest.raises(RuntimeError):
        await notifier.notify("hi")


@pytest.mark.asyncio
async def test_bus_notifier_publishes():
    bus = AsyncIOBus()
    notifier = BusNotifier(bus)
    await notifier.notify("  heater failed  ")
    await notifier.notify("")

    sent = bus.recent(EventTypes.NOTIFICATION_SENT)
    assert [e.payload["text"] for e in sent] == ["heater failed"]


@pytest.mark.asyncio
async def test_simulated_devices_strict_mode():
    devices = SimulatedDevices({"light.a": {"onoff": False}}, strict=True)
    await devices.set_capability("light.a", "onoff", True)
    assert await devices.get_capability("light.a", "onoff") is True
    with pytest.raises(KeyError):
        await devices.set_capability("light.b", "onoff", True)
    with pytest.raises(KeyError):
        await devices.get_capability("light.a", "dim")


@pytest.mark.asyncio
async def test_simulated_scenes_reject_unknown_when_listed():
    scenes = SimulatedScenes(["movie"])
    await scenes.activate("movie")
    assert scenes.activated == ["movie"]
    with pytest.raises(KeyError):
        await scenes.activate("party")
