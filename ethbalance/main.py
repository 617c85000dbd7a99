import os
import sys
import asyncio
import argparse
import logging
import signal
from aiohttp import web
from .config import load_config, build_settings, ConfigError, InvalidAddressError, Settings
from .plugin import EthBalancePlugin, BalanceQueryError, RPCConnectionError, connect
from .helper import MackerelPlugin
from .monitor import BalanceMonitor
from .web import create_web_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mackerel-plugin-ethbalance",
        description="Report Ether balances of addresses as metrics",
    )
    # single-dash spellings keep existing agent configs working
    parser.add_argument('-metric-key-prefix', '--metric-key-prefix', dest='metric_key_prefix',
                        help='Metric key prefix (default: ethereum)')
    parser.add_argument('-rpc', '--rpc', dest='rpc', help='Ethereum JSON-RPC endpoint')
    parser.add_argument('-addresses', '--addresses', dest='addresses',
                        help='Comma-separated address[:label] list (default: 0x0)')
    parser.add_argument('-tempfile', '--tempfile', dest='tempfile', help='Temp file name')
    parser.add_argument('-config', '--config', dest='config', default=os.getenv('CONFIG_PATH'),
                        help='YAML config file (default: $CONFIG_PATH)')
    parser.add_argument('-listen-port', '--listen-port', dest='port', type=int,
                        help='Serve Prometheus metrics on this port instead of printing once')
    parser.add_argument('-scrape-interval', '--scrape-interval', dest='scrape_interval', type=int,
                        help='Seconds between scrapes in exporter mode (default: 60)')
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    file_overrides = load_config(args.config) if args.config else {}
    cli = {
        'metric_key_prefix': args.metric_key_prefix,
        'rpc': args.rpc,
        'addresses': args.addresses,
        'tempfile': args.tempfile,
        'port': args.port,
        'scrape_interval': args.scrape_interval,
    }
    return build_settings(cli, file_overrides)


async def run_exporter(plugin: EthBalancePlugin, port: int, scrape_interval: int, host: str = '0.0.0.0'):
    monitor = BalanceMonitor(plugin, scrape_interval)
    app = create_web_app(monitor)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Server started on port {port}")

    collector = asyncio.create_task(monitor.collect_metrics())

    async def shutdown():
        logger.info("Received shutdown signal")
        await monitor.shutdown()
        collector.cancel()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, lambda: asyncio.create_task(shutdown()))

    try:
        await collector
    except asyncio.CancelledError:
        logger.info("Metrics collection cancelled")
    finally:
        loop.remove_signal_handler(signal.SIGTERM)
        logger.info("Cleaning up runner...")
        await runner.cleanup()


def main(argv=None):
    # stdout carries the plugin protocol, logs go to stderr
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args)
        web3 = connect(settings.rpc)
    except (ConfigError, InvalidAddressError, RPCConnectionError) as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)

    plugin = EthBalancePlugin(settings.addresses, web3, settings.metric_key_prefix)

    if settings.exporter.port is not None:
        try:
            asyncio.run(run_exporter(plugin, settings.exporter.port, settings.exporter.scrape_interval))
        except KeyboardInterrupt:
            logger.info("Received shutdown signal")
        finally:
            logger.info("Program terminated")
        return

    try:
        MackerelPlugin(plugin, settings.tempfile).run()
    except BalanceQueryError as e:
        logger.error(f"Failed to fetch metrics: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
