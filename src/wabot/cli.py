"""
Command-line entry point.

Usage:
    wabot --config sessions.json
    wabot --config sessions.json --session main --session support
    wabot --list
    wabot --config sessions.json --delay 10 --write-config merged.json
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from .config import get_config_manager
from .exceptions import ConfigurationError
from .logging import LogLevel, configure_logging, get_error_handler
from .session_manager import WhatsAppSessionManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_SESSIONS = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wabot",
        description="Multi-session WhatsApp Web bot",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("WABOT_CONFIG_FILE"),
        help="Path to JSON config file (default: $WABOT_CONFIG_FILE)",
    )
    parser.add_argument(
        "--session",
        action="append",
        dest="sessions",
        metavar="ID",
        help="Only start this session (repeatable)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        help="Seconds to wait between session startups",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        type=str.upper,
        help="Console log level",
    )
    parser.add_argument("--log-file", help="Also log to this file")
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser windows instead of running headless",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print configured sessions and exit",
    )
    parser.add_argument(
        "--write-config",
        metavar="PATH",
        help="Write the effective configuration (file, env and flags merged) to PATH and exit",
    )
    return parser


def load_settings(args: argparse.Namespace):
    """Apply config file, then environment, then command-line overrides."""
    manager = get_config_manager()
    manager.reset_to_defaults()
    if args.config:
        manager.load_config(args.config)
    manager.load_config_from_env()

    if args.delay is not None:
        manager.update_config(startup_delay_seconds=args.delay)
    if args.log_level:
        manager.update_config(log_level=LogLevel(args.log_level))
    if args.log_file:
        manager.update_config(log_file=args.log_file)
    if args.headful:
        manager.update_config(headless=False)
    return manager.get_config()


def print_sessions(config) -> None:
    sessions = config.get_sessions()
    print(f"📱 Configured sessions ({len(sessions)}):")
    for session in sessions:
        state = "enabled" if session.enabled else "disabled"
        notify = session.notify_number or "-"
        print(f"  {session.id:<16} {session.name:<24} {state:<9} notify: {notify}")
        print(f"  {'':<16} profile: {session.profile_dir}")


def log_error_summary() -> None:
    """Log how many errors each session ran into, if any."""
    summary = get_error_handler().get_error_summary()
    if not summary["total_errors"]:
        return
    by_session = ", ".join(f"{sid}: {n}" for sid, n in summary["by_session"].items())
    logger.warning(f"⚠️ {summary['total_errors']} error(s) this run ({by_session})")


async def run(
    config,
    session_ids: Optional[List[str]] = None,
    stop: Optional[asyncio.Event] = None,
) -> int:
    """Start sessions and keep running until SIGINT or SIGTERM (or ``stop`` is set)."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops; KeyboardInterrupt still reaches main()
            pass

    try:
        async with WhatsAppSessionManager(config) as manager:
            startup = asyncio.create_task(manager.start_all(session_ids))
            stopped = asyncio.create_task(stop.wait())
            await asyncio.wait({startup, stopped}, return_when=asyncio.FIRST_COMPLETED)

            if not startup.done():
                # interrupted while sessions were still starting
                startup.cancel()
                await asyncio.gather(startup, return_exceptions=True)
                logger.info("Startup interrupted, shutting down...")
                return EXIT_OK

            started = startup.result()
            if not started:
                stopped.cancel()
                logger.error("No session could be started")
                return EXIT_NO_SESSIONS

            logger.info("🚀 Bot running. Press Ctrl+C to stop")
            await stopped
            logger.info("Shutting down...")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        log_error_summary()

    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Run the bot from the command line."""
    args = build_parser().parse_args(argv)

    try:
        config = load_settings(args)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(config.log_level, config.log_file)

    if args.list:
        print_sessions(config)
        return EXIT_OK

    if args.write_config:
        get_config_manager().save_config(args.write_config)
        print(f"💾 Configuration written to {args.write_config}")
        return EXIT_OK

    try:
        return asyncio.run(run(config, args.sessions))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
