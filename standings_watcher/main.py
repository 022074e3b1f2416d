#!/usr/bin/env python3
"""
Main entry point for the Standings Watcher.

This module wires configuration, logging, the polling monitor, the
notifier and the chat bot together, and handles graceful shutdown.

Environment:
    LOG_LEVEL   - logging level (default INFO)
    RUN_ONCE    - run a single poll cycle and exit
    DRY_RUN     - log notifications instead of sending them
    (see utils.load_monitor_config for the monitor settings)
"""

import os
import signal
import sys
import threading
from typing import Optional, Sequence

from standings_watcher.bot import BotPoller, CommandProcessor
from standings_watcher.models import ChangeEvent, Snapshot
from standings_watcher.monitor import StandingsMonitor
from standings_watcher.notify import notify_changes
from standings_watcher.subscribers import SubscriberRegistry
from standings_watcher.utils import (
    MonitorConfig,
    get_logger,
    load_monitor_config,
    parse_bool,
    setup_logging,
    validate_monitor_config,
)


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


def build_change_handler(config: MonitorConfig, subscribers: SubscriberRegistry):
    """Return the callback the monitor invokes with each batch of changes."""

    def handle_changes(changes: Sequence[ChangeEvent], snapshot: Snapshot) -> None:
        notify_changes(
            changes,
            snapshot,
            subscribers.active_chat_ids(),
            config.telegram_token,
            dry_run=config.dry_run
        )

    return handle_changes


def run_monitor(config: MonitorConfig, run_once: bool = False) -> int:
    """
    Run the standings monitor until interrupted.

    Args:
        config: Monitor configuration.
        run_once: Run a single poll cycle and return.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("Standings Watcher - Starting")
    logger.info(f"Tournament URL: {config.endpoint}")
    logger.info(f"Monitoring interval: {config.poll_interval} seconds")
    logger.info(f"Bot token configured: {'Yes' if config.telegram_token else 'No'}")
    logger.info("=" * 60)

    for warning in validate_monitor_config(config):
        logger.warning(warning)

    subscribers = SubscriberRegistry(config.subscribers_path, initial_chat_ids=config.chat_ids)
    monitor = StandingsMonitor(
        config,
        on_changes=build_change_handler(config, subscribers)
    )

    if run_once:
        monitor.run_cycle()
        logger.info("Single cycle complete")
        return EXIT_SUCCESS

    bot: Optional[BotPoller] = None
    if config.telegram_token and not config.dry_run:
        bot = BotPoller(config.telegram_token, CommandProcessor(monitor, subscribers))
        bot.start()

    shutdown = threading.Event()

    def request_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        shutdown.set()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    monitor.start()

    try:
        while not shutdown.is_set() and monitor.running:
            shutdown.wait(1.0)
    finally:
        monitor.stop()
        if bot is not None:
            bot.stop()

    logger.info("Standings Watcher - Stopped")
    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the Standings Watcher.

    Sets up logging and runs the monitor with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    run_once = parse_bool(os.environ.get("RUN_ONCE", ""))

    try:
        config = load_monitor_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    if config.dry_run:
        logger.info("Running in DRY RUN mode - notifications will be skipped")

    try:
        return run_monitor(config, run_once=run_once)

    except KeyboardInterrupt:
        logger.warning("Monitor interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
