#!/usr/bin/env python3
"""
Stop place synchronization service.

Keeps the Repository in sync with the stop place Registry:
- delta sync of changed stop places on the delta cron schedule
- full sync (after deleting unused stop places) on the full cron schedule
- busy responses from the Repository are retried after a fixed delay

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH]
    python scripts/scheduled_sync.py --once [--full-sync] [--config CONFIG_PATH]
"""

import argparse
import signal
import sys
import threading

import structlog

from src.providers import build_sync_service
from src.utils.config_loader import ConfigLoader, ConfigurationError
from src.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def run_once(config_path: str | None = None, full_sync: bool = False) -> int:
    """
    Run a single synchronization outside the cron schedule.

    Args:
        config_path: Optional path to configuration file
        full_sync: If True, perform full sync instead of delta

    Returns:
        Process exit code
    """
    config = ConfigLoader().load_config(config_path)
    configure_logging_from_config(config.logging)

    service = build_sync_service(config)
    try:
        reports = service.run_until_idle(full_sync=full_sync)
    except Exception as e:
        log.error("one_off_sync_failed", error=str(e), exc_info=True)
        return 1

    for report in reports:
        log.info(
            "one_off_sync_attempt",
            mode=report.mode.value,
            status=report.status.value,
            changes_pushed=report.changes_pushed,
            duration_seconds=report.duration_seconds,
        )
    return 0


def run_service(config_path: str | None = None) -> int:
    """Run cron triggers and the queue consumer until SIGINT or SIGTERM."""
    loader = ConfigLoader()
    config = loader.load_config(config_path)
    configure_logging_from_config(config.logging)
    loader.validate_config(config)

    service = build_sync_service(config)
    shutdown = threading.Event()

    def handle_signal(signum, frame):
        log.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    service.start()
    log.info("stop_place_sync_service_running")
    shutdown.wait()
    service.stop()
    return 0


def main():
    """Main entry point for the sync service."""
    parser = argparse.ArgumentParser(description="Stop place synchronization service")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single synchronization and exit",
    )
    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="With --once, perform a full sync instead of a delta sync",
    )

    args = parser.parse_args()

    try:
        if args.once:
            exit_code = run_once(config_path=args.config, full_sync=args.full_sync)
        else:
            exit_code = run_service(config_path=args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        exit_code = 2

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
