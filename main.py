"""homesched entrypoint -- wires all components together and starts the server.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from core.bus import AsyncIOBus
from core.config import AppConfig, load_config
from core.data.store import Store
from core.duration import to_seconds
from core.registry import PluginRegistry
from core.time_context import TimeContext
from scheduler.errors import TaskValidationError
from scheduler.runner import Scheduler
from server import create_app


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quiet down noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="homesched home automation task scheduler")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.homesched/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.homesched/.env)",
    )
    return parser.parse_args()


def _load_plugins(config: AppConfig, bus: AsyncIOBus, store: Store, registry: PluginRegistry) -> None:
    """Instantiate and register collaborators from config."""
    logger = logging.getLogger("homesched.plugins")

    # 1. Persistence and settings
    registry.register("persistence", store)
    registry.register("settings", store)

    # 2. Energy price feed (registered before the simulated one so it wins)
    feed_cfg = config.plugins.energy_price
    if feed_cfg.enabled:
        try:
            from plugins.energy_price import HttpEnergyPriceService
            registry.register("energy_price", HttpEnergyPriceService(
                url=feed_cfg.url,
                api_key=feed_cfg.api_key,
                price_field=feed_cfg.price_field,
                level_field=feed_cfg.level_field,
                cache_ttl=to_seconds(feed_cfg.cache_ttl),
            ))
            logger.info("Loaded energy price feed: %s", feed_cfg.url)
        except Exception as e:
            logger.error("Failed to load energy price feed: %s", e)

    # 3. Simulated home
    sim_cfg = config.plugins.simulated
    if sim_cfg.enabled:
        from plugins.simulated import (
            SimulatedDevices,
            SimulatedFlows,
            SimulatedScenes,
            StaticEnergyPrice,
            StaticPresence,
        )
        registry.register("device", SimulatedDevices(sim_cfg.devices))
        registry.register("scene", SimulatedScenes(sim_cfg.scenes))
        registry.register("flow", SimulatedFlows(sim_cfg.flows))
        registry.register("presence", StaticPresence(sim_cfg.presence))
        registry.register("energy_price", StaticEnergyPrice(sim_cfg.energy_price, sim_cfg.energy_level))
        logger.info("Loaded simulated home (%d device(s))", len(sim_cfg.devices))

    # 4. Notifiers
    from plugins.notifications import BusNotifier
    registry.register("notifier", BusNotifier(bus))

    webhook_cfg = config.plugins.webhook
    if webhook_cfg.enabled:
        try:
            from plugins.webhook import WebhookNotifier
            registry.register("notifier", WebhookNotifier(url=webhook_cfg.url, headers=webhook_cfg.headers))
            logger.info("Loaded webhook notifier")
        except Exception as e:
            logger.error("Failed to load webhook notifier: %s", e)


async def _seed_default_tasks(config: AppConfig, scheduler: Scheduler) -> None:
    """Create the configured default tasks on first start."""
    logger = logging.getLogger("homesched")
    if not config.default_tasks or scheduler.list_tasks():
        return
    for task_data in config.default_tasks:
        try:
            task = await scheduler.create_task(task_data)
            logger.info("Seeded default task: %s", task.name)
        except TaskValidationError as e:
            logger.error("Invalid default task %r: %s", task_data.get("name"), e.errors)


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Initialize all components and start the server."""
    # Load configuration
    config = load_config(config_path=config_path, env_path=env_path)
    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    logger = logging.getLogger("homesched")
    logger.info("Configuration loaded from %s", config.home_path)

    # Initialize core infrastructure
    store = Store(config.home_path)
    events_dir = config.home_path / "events" if config.scheduler.persist_events else None
    bus = AsyncIOBus(events_dir=events_dir)
    registry = PluginRegistry()

    _load_plugins(config, bus, store, registry)
    logger.info("Plugin registry: %s", registry.summary())

    sched_cfg = config.scheduler
    scheduler = Scheduler(
        registry=registry,
        bus=bus,
        clock=TimeContext.live(sched_cfg.timezone),
        persistence=store,
        scan_interval=sched_cfg.seconds("scan_interval"),
        drain_interval=sched_cfg.seconds("drain_interval"),
        optimize_interval=sched_cfg.seconds("optimize_interval"),
        deferral_delay=sched_cfg.seconds("deferral_delay"),
        history_limit=sched_cfg.history_limit,
    )

    # Create HTTP server
    app = create_app(
        config=config,
        bus=bus,
        registry=registry,
        scheduler=scheduler,
    )

    # Start scheduler
    await scheduler.start()
    await _seed_default_tasks(config, scheduler)

    # Start server
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()

    logger.info(
        "homesched running at http://%s:%d",
        config.server.host,
        config.server.port,
    )
    logger.info("State directory: %s", config.home_path)

    # Run until interrupted
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()

        # Close HTTP clients held by plugins (dedupe: one instance may serve several keys)
        closed: set[int] = set()
        for key in ("energy_price", "notifier"):
            for plugin in registry.get_all(key):
                if id(plugin) in closed or not hasattr(plugin, "aclose"):
                    continue
                closed.add(id(plugin))
                try:
                    await plugin.aclose()
                except Exception as e:
                    logger.error("Error closing plugin %s: %s", getattr(plugin, "name", "?"), e)

        store.close()
        await runner.cleanup()
        logger.info("Shutdown complete")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
