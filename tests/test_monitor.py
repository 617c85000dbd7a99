import asyncio
import time
from unittest.mock import PropertyMock

import pytest
from aiohttp import test_utils
from prometheus_client import REGISTRY

from ethbalance.config import parse_addresses
from ethbalance.monitor import BalanceMonitor
from ethbalance.plugin import EthBalancePlugin
from ethbalance.web import create_web_app, metrics_handler
from conftest import ADDR_A, ADDR_B


def failures(prefix):
    return REGISTRY.get_sample_value('ethbalance_scrape_failures_total', {'prefix': prefix}) or 0


def balance(prefix, name, label):
    return REGISTRY.get_sample_value(
        'ethbalance_balance_ether', {'prefix': prefix, 'name': name, 'label': label}
    )


@pytest.fixture
def plugin_factory(web3):
    def make(prefix):
        return EthBalancePlugin(parse_addresses(f"{ADDR_A}:Alice,{ADDR_B}"), web3, prefix)
    return make


def test_scrape_once_sets_gauges(plugin_factory, web3):
    web3.eth.get_balance.side_effect = [2 * 10 ** 18, 5 * 10 ** 17]
    monitor = BalanceMonitor(plugin_factory("scrape_ok"), scrape_interval=60)

    assert asyncio.run(monitor.scrape_once()) is True
    assert balance("scrape_ok", ADDR_A, "Alice") == 2.0
    assert balance("scrape_ok", ADDR_B, ADDR_B) == 0.5
    assert monitor.last_successful_scrape_time > 0


def test_failed_scrape_keeps_previous_values(plugin_factory, web3):
    web3.eth.get_balance.side_effect = [10 ** 18, 10 ** 18, 3 * 10 ** 18, ConnectionError("down")]
    monitor = BalanceMonitor(plugin_factory("scrape_fail"), scrape_interval=60)

    assert asyncio.run(monitor.scrape_once()) is True
    before = failures("scrape_fail")
    assert asyncio.run(monitor.scrape_once()) is False

    assert failures("scrape_fail") == before + 1
    # no partial update from the failed cycle
    assert balance("scrape_fail", ADDR_A, "Alice") == 1.0


def test_check_rpc_health(plugin_factory, web3):
    monitor = BalanceMonitor(plugin_factory("rpc_health"), scrape_interval=60)
    assert asyncio.run(monitor.check_rpc_health()) is True
    assert REGISTRY.get_sample_value('ethbalance_rpc_health', {'prefix': 'rpc_health'}) == 1

    type(web3.eth).block_number = PropertyMock(side_effect=ConnectionError("down"))
    assert asyncio.run(monitor.check_rpc_health()) is False
    assert REGISTRY.get_sample_value('ethbalance_rpc_health', {'prefix': 'rpc_health'}) == 0


def test_health_handler(plugin_factory):
    monitor = BalanceMonitor(plugin_factory("health"), scrape_interval=60)

    response = asyncio.run(monitor.health_check_handler(None))
    assert response.status == 500
    assert response.text == "unhealthy"

    monitor.rpc_ok = True
    monitor.last_successful_scrape_time = time.time()
    response = asyncio.run(monitor.health_check_handler(None))
    assert response.status == 200
    assert response.text == "healthy"

    monitor.last_successful_scrape_time = time.time() - 121
    assert asyncio.run(monitor.health_check_handler(None)).status == 500


def test_collect_metrics_stops_after_shutdown(plugin_factory, web3):
    web3.eth.get_balance.return_value = 10 ** 18
    monitor = BalanceMonitor(plugin_factory("collect"), scrape_interval=0)

    async def run():
        task = asyncio.create_task(monitor.collect_metrics())
        await asyncio.sleep(0.05)
        await monitor.shutdown()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())
    assert balance("collect", ADDR_A, "Alice") == 1.0


def test_metrics_handler_exposes_balances(plugin_factory, web3):
    web3.eth.get_balance.side_effect = [10 ** 18, 0]
    monitor = BalanceMonitor(plugin_factory("exposed"), scrape_interval=60)
    asyncio.run(monitor.scrape_once())

    response = asyncio.run(metrics_handler(None))
    assert response.headers['Content-Type'].startswith('text/plain')
    lines = [line for line in response.body.decode().splitlines() if 'prefix="exposed"' in line]
    assert len(lines) == 2
    alice = next(line for line in lines if 'label="Alice"' in line)
    assert alice.startswith('ethbalance_balance_ether{')
    assert f'name="{ADDR_A}"' in alice
    assert alice.endswith(' 1.0')


def test_web_app_routes(plugin_factory, web3):
    web3.eth.get_balance.side_effect = [10 ** 18, 2 * 10 ** 18]
    monitor = BalanceMonitor(plugin_factory("routed"), scrape_interval=60)

    async def run():
        await monitor.check_rpc_health()
        await monitor.scrape_once()
        async with test_utils.TestClient(test_utils.TestServer(create_web_app(monitor))) as client:
            health = await client.get("/health")
            metrics = await client.get("/metrics")
            return health.status, await health.text(), await metrics.text()

    status, text, body = asyncio.run(run())
    assert (status, text) == (200, "healthy")
    assert any('prefix="routed"' in line and line.endswith(" 2.0") for line in body.splitlines())
    # closing the app stops the scrape loop
    assert monitor.running is False
