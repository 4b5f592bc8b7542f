"""Command-line entry point for pihole-sync.

Exit codes:
    0: success (or clean shutdown of the long-running scheduler)
    1: ``sync --once`` finished with at least one failed secondary
    2: configuration error
"""

import argparse
import json
import logging
import os
import signal
import sys
import threading

from . import __version__
from .config import load_config
from .config_schema import AppConfig
from .core.session import SessionManager
from .errors import ConfigError
from .logger import setup_logging
from .sync.models import CycleResult, TriggerEvent, TriggerKind
from .sync.orchestrator import CycleRunner, SyncOrchestrator
from .sync.readiness import ReadinessProber
from .sync.reporter import cycle_to_json, format_cycle_report
from .sync.triggers import TriggerScheduler, TriggerSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pihole-sync",
        description="Synchronise Pi-hole v6 configuration from a main instance to secondaries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one cycle and exit (non-zero if any secondary failed)
  pihole-sync sync --once

  # Run the configured trigger loop without syncing at startup
  pihole-sync --config /etc/pihole-sync/config.yaml sync --no-initial-sync

  # Validate the config file only
  pihole-sync check-config

Config discovery: --config, $PIHOLE_SYNC_CONFIG, /etc/pihole-sync/config.yaml,
~/.config/pihole-sync/config.yaml.
        """,
    )
    parser.add_argument(
        "--config",
        help="Path to the YAML config file (takes precedence over PIHOLE_SYNC_CONFIG)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        help="Also write log records to this file (overrides logging.file)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log output format (overrides logging.format)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"pihole-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Run sync cycles")
    sync.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit with its status",
    )
    sync.add_argument(
        "--no-initial-sync",
        action="store_true",
        help="Skip the sync at startup (useful for watch modes)",
    )

    commands.add_parser("check-config", help="Validate the config and exit")
    return parser


def _logging_mode() -> str:
    # systemd sets INVOCATION_ID for every unit it starts
    return "service" if os.getenv("INVOCATION_ID") else "cli"


def _configure_logging(args: argparse.Namespace, config: AppConfig | None) -> None:
    section = config.logging if config is not None else None
    setup_logging(
        mode=_logging_mode(),
        debug=args.debug,
        log_file=args.log_file or (section.file if section else None),
        log_format=args.log_format or (section.format if section else "text"),
        level=section.level if section else None,
    )


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame):
        logger.info(
            "Received %s; finishing current step and shutting down",
            signal.Signals(signum).name,
        )
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _log_report(result: CycleResult, log_format: str) -> None:
    if log_format == "json":
        logger.info(json.dumps(cycle_to_json(result)))
        return
    for line in format_cycle_report(result).splitlines():
        if line:
            logger.info(line)


def check_config(config: AppConfig) -> int:
    print(f"Config OK: main {config.main.label}, {len(config.secondary)} secondaries")
    print(f"Trigger mode: {config.sync.trigger_mode.value}")
    for secondary in config.secondary:
        print(f"  {secondary.label}: {secondary.sync_mode.value}")
    return EXIT_OK


def run_sync(
    config: AppConfig,
    once: bool,
    initial_sync: bool,
    log_format: str = "text",
) -> int:
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    sessions = SessionManager(
        timeout=(
            config.sync.connect_timeout_secs,
            config.sync.request_timeout_secs,
        )
    )
    prober = ReadinessProber(sessions, stop_event=stop_event)
    orchestrator = SyncOrchestrator(config, sessions=sessions, prober=prober)
    orchestrator.prepare()

    logger.info("Running in sync mode...")

    if once:
        logger.info("Sync trigger mode: run-once (no watcher).")
        result = orchestrator.run_cycle(
            TriggerEvent(kind=TriggerKind.ONCE), stop_event
        )
        if log_format == "json":
            print(json.dumps(cycle_to_json(result), indent=2))
        else:
            print(format_cycle_report(result))
        return EXIT_OK if result.ok else EXIT_SYNC_FAILED

    def _report(result: CycleResult) -> None:
        _log_report(result, log_format)

    runner = CycleRunner(orchestrator, stop_event, on_result=_report)
    scheduler = TriggerScheduler(
        TriggerSettings.from_config(config.sync, initial_sync=initial_sync),
        fire=runner.run,
        fetch_main_config=orchestrator.fetch_main_config,
        prober=prober,
        main=config.main,
        on_skip=_report,
    )
    scheduler.run(stop_event)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args, None)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    _configure_logging(args, config)

    if args.command == "check-config":
        return check_config(config)

    log_format = args.log_format or config.logging.format
    try:
        return run_sync(
            config,
            once=args.once,
            initial_sync=not args.no_initial_sync,
            log_format=log_format,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    run()
