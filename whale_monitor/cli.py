"""
Whale Monitor - CLI Entry Point
===============================

Builds the stores and services once, then runs the poll loop and the
reporting API side by side until interrupted.

Usage:
    whale-monitor                  # Poll + HTTP API
    whale-monitor --dry-run        # Log alerts instead of sending to Telegram
    whale-monitor --once           # Single tick, then exit
    whale-monitor --test-telegram  # Send a test message
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from aiohttp import web

from .alerts.dedup import AlertDeduplicator
from .alerts.dispatcher import AlertDispatcher
from .alerts.telegram import TelegramChannel
from .api.hyperliquid import HyperliquidClient
from .config import Config
from .core.monitor import WhaleMonitor
from .db.alert_log import AlertLog
from .db.snapshot_store import SnapshotStore
from .db.whale_db import WhaleDB
from .errors import ConfigError, DeliveryFailed, WhaleMonitorError
from .web.app import create_app

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "logs/monitor.log"):
    """Configure logging for the monitor service."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    dated_log_file = None
    if log_file:
        # Create date-stamped log file (e.g., logs/monitor_2026-01-18.log)
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        date_str = datetime.now().strftime("%Y-%m-%d")
        dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

        file_handler = logging.FileHandler(dated_log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    if dated_log_file:
        root_logger.info(f"Logging to: {dated_log_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whale-monitor",
        description="Hyperliquid Whale Position Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  whale-monitor                  # Start monitor and HTTP API
  whale-monitor --dry-run        # Log alerts only
  whale-monitor --once --no-web  # One poll tick, no HTTP server
  whale-monitor --test-telegram  # Test Telegram setup
        """
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Log alerts instead of sending to Telegram'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single poll tick and exit'
    )
    parser.add_argument(
        '--no-web',
        action='store_true',
        help='Do not start the HTTP reporting API'
    )
    parser.add_argument(
        '--test-telegram',
        action='store_true',
        help='Send a test message to verify Telegram configuration'
    )
    parser.add_argument(
        '--poll-ms',
        type=int,
        help='Poll interval in milliseconds (overrides POLL_INTERVAL_MS)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Log level (overrides LOG_LEVEL)'
    )
    return parser


async def _serve(config: Config, monitor: WhaleMonitor, app: Optional[web.Application], once: bool):
    runner = None
    if app is not None:
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, config.http_host, config.http_port)
        await site.start()
        logger.info(f"HTTP API listening on {config.http_host}:{config.http_port}")

    try:
        if once:
            result = await monitor.tick()
            logger.info(
                f"Single tick: {result.polled}/{result.addresses} polled, "
                f"{result.events} events, {result.alerts} alerts"
            )
            await monitor.shutdown()
        else:
            await monitor.run()
    finally:
        if runner is not None:
            await runner.cleanup()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = Config.from_env()
        if args.poll_ms is not None:
            config.poll_interval_ms = args.poll_ms
        if args.log_level:
            config.log_level = args.log_level
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_file)

    try:
        channel = TelegramChannel.from_config(config, dry_run=args.dry_run)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if args.test_telegram:
        try:
            channel.send("🐋 <b>Whale monitor test alert</b>\nTelegram is configured.")
        except DeliveryFailed as e:
            print(f"Failed to send test alert ({e}). Check TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")
            return 1
        print("Test alert sent successfully!")
        return 0

    try:
        whale_db = WhaleDB(config.db_path)
        store = SnapshotStore(config.db_path)
        alert_log = AlertLog(config.db_path)
    except WhaleMonitorError as e:
        logger.error(f"Failed to open database {config.db_path}: {e}")
        return 1

    dispatcher = AlertDispatcher(
        channel,
        alert_log=alert_log,
        retry_backoff_sec=config.delivery_retry_backoff_sec,
    )
    monitor = WhaleMonitor(
        config=config,
        client=HyperliquidClient(config),
        whale_db=whale_db,
        store=store,
        alert_log=alert_log,
        dispatcher=dispatcher,
        dedup=AlertDeduplicator(config.alert_cooldown_sec),
    )

    app = None if args.no_web else create_app(config, whale_db, store, alert_log, channel)

    logger.info(f"Tracking {whale_db.count()} whales (db: {config.db_path})")
    if channel.dry_run:
        logger.info("Dry run: alerts are logged, not sent")

    try:
        asyncio.run(_serve(config, monitor, app, args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
