"""
Polling Scheduler

Uses APScheduler to periodically run collection cycles and subnet discovery.
"""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from routerwatch.config import AppConfig, get_config
from routerwatch.discovery.scanner import DiscoveryEngine
from routerwatch.polling.collector import MetricsCollector
from routerwatch.storage import Storage

logger = logging.getLogger(__name__)


class PollingScheduler:
    """Manages collection and discovery jobs."""

    def __init__(
        self,
        storage: Storage,
        collector: MetricsCollector,
        discovery: DiscoveryEngine,
        config: AppConfig | None = None,
    ):
        self._storage = storage
        self._collector = collector
        self._discovery = discovery
        self._config = config or get_config()
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start the polling scheduler."""
        self._scheduler = AsyncIOScheduler()

        polling = self._config.polling
        discovery = self._config.discovery

        self._scheduler.add_job(
            self.collect_all,
            IntervalTrigger(seconds=polling.collect_interval),
            id="collect_devices",
            name="Collect metrics from all devices",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if discovery.auto_discover and discovery.subnets:
            self._scheduler.add_job(
                self.discover_all,
                IntervalTrigger(seconds=discovery.discover_interval),
                id="discover_subnets",
                name="Discover devices on configured subnets",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()
        logger.info(
            "Polling scheduler started: collect=%ds, discovery=%s",
            polling.collect_interval,
            f"{discovery.discover_interval}s" if discovery.auto_discover else "off",
        )

    async def stop(self) -> None:
        """Stop the polling scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Polling scheduler stopped")

    async def poll_now(self) -> dict[str, int]:
        """Run a collection pass immediately."""
        return await self.collect_all()

    # ─────────────────────────────────────────────────────────────
    # Jobs
    # ─────────────────────────────────────────────────────────────

    async def collect_all(self) -> dict[str, int]:
        """
        Run one collection cycle for every stored device.

        Cycles for different devices run concurrently, bounded by
        polling.max_concurrent_collections.
        """
        try:
            devices = await self._storage.list_devices()
        except Exception as e:
            logger.error("Failed to list devices: %s", e)
            return {"devices": 0, "online": 0, "failed": 0}

        if not devices:
            logger.debug("No devices registered, skipping collection")
            return {"devices": 0, "online": 0, "failed": 0}

        semaphore = asyncio.Semaphore(max(self._config.polling.max_concurrent_collections, 1))

        async def run(device_id: int) -> bool:
            async with semaphore:
                return await self._collector.collect(device_id)

        results = await asyncio.gather(
            *(run(device.id) for device in devices),
            return_exceptions=True,
        )

        online = 0
        for device, result in zip(devices, results):
            if isinstance(result, Exception):
                logger.error("Collection for device %s raised: %s", device.id, result)
            elif result:
                online += 1

        summary = {"devices": len(devices), "online": online, "failed": len(devices) - online}
        logger.info(
            "Collected %d devices: %d online, %d failed",
            summary["devices"], summary["online"], summary["failed"],
        )
        return summary

    async def discover_all(self) -> int:
        """Scan every configured subnet. Returns the total discovered count."""
        total = 0
        for subnet in self._config.discovery.subnets:
            try:
                total += await self._discovery.discover(subnet)
            except ValueError as e:
                logger.error("Skipping subnet %s: %s", subnet, e)
        return total
