import logging
import asyncio
import time
from aiohttp import web
from .plugin import EthBalancePlugin, BalanceQueryError
from .metrics import (
    health_gauge, last_successful_scrape, scrape_failures_total,
    rpc_health, balance_ether
)

logger = logging.getLogger(__name__)


class BalanceMonitor:
    """Runs the balance plugin on an interval and publishes Prometheus gauges"""

    def __init__(self, plugin: EthBalancePlugin, scrape_interval: int):
        self.plugin = plugin
        self.scrape_interval = scrape_interval
        self.running = True
        self.rpc_ok = False
        self.last_successful_scrape_time = 0.0

    async def health_check_handler(self, request):
        # Check if we had a successful scrape in the last 2 intervals
        last_scrape_ok = time.time() - self.last_successful_scrape_time < (self.scrape_interval * 2)

        is_healthy = self.rpc_ok and last_scrape_ok
        health_gauge.set(1 if is_healthy else 0)

        if is_healthy:
            return web.Response(text="healthy", status=200)
        else:
            return web.Response(text="unhealthy", status=500)

    async def check_rpc_health(self) -> bool:
        prefix = self.plugin.metric_key_prefix()
        try:
            await asyncio.to_thread(lambda: self.plugin.web3.eth.block_number)
            self.rpc_ok = True
        except Exception as e:
            logger.error(f"Health check failed for {prefix}: {str(e)}")
            self.rpc_ok = False

        rpc_health.labels(prefix=prefix).set(1 if self.rpc_ok else 0)
        return self.rpc_ok

    async def scrape_once(self) -> bool:
        """Run one collection cycle; gauges are only touched when every query succeeded"""
        prefix = self.plugin.metric_key_prefix()
        try:
            values = await asyncio.to_thread(self.plugin.fetch_metrics)
        except BalanceQueryError as e:
            logger.error(f"Scrape failed: {e}")
            scrape_failures_total.labels(prefix=prefix).inc()
            return False

        for address in self.plugin.addresses:
            balance_ether.labels(
                prefix=prefix, name=address.name, label=address.label
            ).set(values[address.name])

        self.last_successful_scrape_time = time.time()
        last_successful_scrape.set(self.last_successful_scrape_time)
        logger.info(f"Updated {len(values)} metrics successfully")
        return True

    async def collect_metrics(self):
        logger.info("Starting metrics collection...")

        while self.running:
            if await self.check_rpc_health():
                await self.scrape_once()
            else:
                scrape_failures_total.labels(prefix=self.plugin.metric_key_prefix()).inc()
            await asyncio.sleep(self.scrape_interval)

        logger.info("Metrics collection stopped")

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down balance monitor...")
        self.running = False
