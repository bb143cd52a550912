"""
Lot Rebalancer Service

Balances every configured account on a fixed interval, or once with --once.
Configuration is read from CONFIG_PATH (default ./config.yaml).
"""
import argparse
import asyncio
import signal
import sys
import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml

from app_config import AccountConfig, AppConfig, load_config
from .broker_factory import create_broker_client
from .logger import configure_root_logger
from .metrics import CachedMetricProvider, HttpMetricSource, MetricsCollector
from .rebalancer import AccountRebalancer
from .scheduler import RebalanceScheduler
from .snapshot_store import JsonSnapshotStore

logger = logging.getLogger(__name__)


class RebalancerApp:
    """Main application wiring configuration, broker clients and the scheduler"""

    def __init__(self, config: AppConfig):
        self.config = config
        self.snapshot_store = JsonSnapshotStore(config.storage.snapshot_dir)

        etf_source = share_source = None
        if config.metrics.live_base_url:
            timeout = config.metrics.request_timeout_seconds
            etf_source = HttpMetricSource(config.metrics.live_base_url, kind='etf', timeout_seconds=timeout)
            share_source = HttpMetricSource(config.metrics.live_base_url, kind='share', timeout_seconds=timeout)

        self.metric_provider = CachedMetricProvider(
            config.storage.metrics_dir,
            etf_source=etf_source,
            share_source=share_source,
            home_currency=config.trading.home_currency,
        )
        self.metrics_collector = None
        if etf_source is not None:
            self.metrics_collector = MetricsCollector(
                config.storage.metrics_dir, etf_source, home_currency=config.trading.home_currency
            )

        self.scheduler = RebalanceScheduler(config, self.create_rebalancer)
        self.stop_event = asyncio.Event()

    def create_rebalancer(self, account: AccountConfig) -> AccountRebalancer:
        broker = create_broker_client(account, logger=logger)
        return AccountRebalancer(
            broker,
            self.config,
            metric_provider=self.metric_provider,
            snapshot_store=self.snapshot_store,
            metrics_collector=self.metrics_collector,
        )

    async def run_once(self) -> bool:
        results = await self.scheduler.run_once()
        return all(r.success for r in results.values())

    async def run_forever(self):
        await self.scheduler.start()
        try:
            await self.stop_event.wait()
        finally:
            await self.scheduler.stop()

    def stop(self):
        logger.info("Shutdown requested")
        self.stop_event.set()


def setup_signal_handlers(app: RebalancerApp):
    """Set up signal handlers for graceful shutdown"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.stop)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms (Windows)
            signal.signal(sig, lambda sig_num, frame: app.stop())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Lot-quantized portfolio rebalancer")
    parser.add_argument('--once', action='store_true', help="Run a single balancing pass and exit")
    parser.add_argument('--config', default=os.getenv('CONFIG_PATH', 'config.yaml'),
                        help="Path to config.yaml (defaults to $CONFIG_PATH)")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    try:
        config = load_config(Path(args.config))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    configure_root_logger(config.service)
    app = RebalancerApp(config)

    if args.once or config.service.run_once:
        return 0 if await app.run_once() else 1

    setup_signal_handlers(app)
    await app.run_forever()
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Application terminated by user")


if __name__ == "__main__":
    cli()
