#!/usr/bin/env python3
"""CLI entry point for Session Semaphore.

Usage:
    python -m session_semaphore <command> [OPTIONS]
    session-semaphore <command> [OPTIONS]

Commands:
    hook      Apply one hook event envelope read from stdin (always exits 0)
    monitor   Watch the status file and stream the session view as NDJSON
    list      Print the current session view as JSON and exit

Monitor options:
    --pipe PATH                 Write NDJSON to a named pipe instead of stdout
    --output-file PATH          JSON snapshot for polling consumers
    --refresh-interval SECONDS  Focus/workspace refresh cadence (default: 0.25)
    --reconcile-interval SECS   Dead process cleanup cadence (default: 5)
    --no-windows                Disable focus and workspace detection
    --verbose                   Enable verbose logging
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from . import __version__, configure_logging
from .config import SemaphoreConfig, default_output_file


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="session-semaphore",
        description="Session Semaphore - Track Claude Code session status across terminals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Register as the hook command for every lifecycle event
    session-semaphore hook

    # Stream the view to a named pipe for EWW deflisten
    session-semaphore monitor --pipe $XDG_RUNTIME_DIR/session-semaphore.pipe

    # One-shot view
    session-semaphore list

Environment Variables:
    SESSION_SEMAPHORE_STATUS_FILE         Status file (~/.claude/session-semaphore-status.json)
    SESSION_SEMAPHORE_DEBUG               Append hook diagnostics to the debug log
    SESSION_SEMAPHORE_REFRESH_INTERVAL    Override refresh interval (0.25 seconds)
    SESSION_SEMAPHORE_RECONCILE_INTERVAL  Override reconcile interval (5 seconds)
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--status-file",
        type=Path,
        default=None,
        help="Status file path (env: SESSION_SEMAPHORE_STATUS_FILE)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("hook", help="Apply a hook event envelope from stdin")

    monitor = subparsers.add_parser("monitor", help="Stream the session view as NDJSON")
    monitor.add_argument(
        "--pipe",
        type=Path,
        default=None,
        help="Write JSON stream to named pipe (default: stdout)",
    )
    monitor.add_argument(
        "--output-file",
        type=Path,
        default=None,
        help=f"JSON snapshot for polling readers (default: {default_output_file()})",
    )
    monitor.add_argument(
        "--refresh-interval",
        type=float,
        default=None,
        help="Seconds between focus/workspace refreshes (default: 0.25)",
    )
    monitor.add_argument(
        "--reconcile-interval",
        type=float,
        default=None,
        help="Seconds between dead process cleanups (default: 5)",
    )
    monitor.add_argument(
        "--no-windows",
        action="store_true",
        help="Disable focus and workspace detection",
    )

    listing = subparsers.add_parser("list", help="Print the current session view as JSON")
    listing.add_argument(
        "--no-windows",
        action="store_true",
        help="Disable focus and workspace detection",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SemaphoreConfig:
    """Environment configuration with command-line overrides applied."""
    return SemaphoreConfig.from_env(
        status_file=args.status_file,
        refresh_interval=getattr(args, "refresh_interval", None),
        reconcile_interval=getattr(args, "reconcile_interval", None),
    )


def _window_backend(args: argparse.Namespace, processes):
    from .windows import NullWindowBackend, create_window_backend

    if args.no_windows:
        return NullWindowBackend()
    return create_window_backend(processes)


async def monitor_async(args: argparse.Namespace, config: SemaphoreConfig) -> int:
    """Run the monitor until SIGTERM/SIGINT."""
    from .monitor import StatusMonitor
    from .output import OutputWriter
    from .processes import ProcessInspector

    logger = logging.getLogger("session_semaphore")
    logger.info(f"Starting Session Semaphore monitor v{__version__}")
    logger.info(f"Status file: {config.status_file}")

    processes = ProcessInspector()
    output = OutputWriter(pipe_path=args.pipe, json_file_path=args.output_file)
    monitor = StatusMonitor(
        config,
        processes=processes,
        windows=_window_backend(args, processes),
        output=output,
    )

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await output.start()
        await monitor.start()
        logger.info("Monitor started successfully")
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Monitor error: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        await monitor.stop()
        await output.stop()

    return 0


async def list_async(args: argparse.Namespace, config: SemaphoreConfig) -> int:
    """Print one view snapshot to stdout."""
    from .monitor import StatusMonitor
    from .processes import ProcessInspector

    processes = ProcessInspector()
    monitor = StatusMonitor(config, processes=processes, windows=_window_backend(args, processes))
    try:
        view = await monitor.snapshot()
    finally:
        await monitor.windows.close()

    print(json.dumps(view.model_dump(mode="json"), indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    config = build_config(args)

    if args.command == "hook":
        from .hook import run

        sys.exit(run(config=config))

    if args.verbose:
        configure_logging("DEBUG")
    else:
        configure_logging("INFO" if args.command == "monitor" else "WARNING")

    handler = monitor_async if args.command == "monitor" else list_async
    try:
        exit_code = asyncio.run(handler(args, config))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
