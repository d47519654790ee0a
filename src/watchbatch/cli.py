"""Command-line interface for watchbatch."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time
from collections.abc import Sequence
from typing import TextIO

from watchbatch import __version__
from watchbatch.config.schema import WatchConfiguration
from watchbatch.errors import ConfigurationError, TransportError
from watchbatch.watching.aggregator import ChangeAggregator, TransportFactory
from watchbatch.watching.events import AggregatedEvent

EXIT_OK = 0
EXIT_WATCH_FAILED = 1
EXIT_CONFIG_ERROR = 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="watchbatch",
        description="Watch paths under a root and print settled change batches as JSON lines",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "root",
        help="Project root to watch",
    )
    parser.add_argument(
        "--file",
        dest="files",
        action="append",
        default=[],
        metavar="PATH",
        help="File to watch, relative to ROOT (can be repeated)",
    )
    parser.add_argument(
        "--dir",
        dest="dirs",
        action="append",
        default=[],
        metavar="PATH",
        help="Directory to watch, relative to ROOT (can be repeated)",
    )
    parser.add_argument(
        "--since",
        help="Watchman clock or millisecond timestamp to report changes from (default: now)",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        metavar="SECONDS",
        help="Quiet period before a batch is printed",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    return parser


def parse_since(value: str | None) -> str | float:
    """A number is a millisecond timestamp; anything else is a clock."""
    if value is None:
        return time.time() * 1000
    try:
        return float(value)
    except ValueError:
        return value


def _resolve(root: str, paths: Sequence[str]) -> list[str]:
    return [os.path.normpath(os.path.join(root, path)) for path in paths]


async def run_watch(
    config: WatchConfiguration,
    files: Sequence[str],
    dirs: Sequence[str],
    since: str | float,
    *,
    out: TextIO | None = None,
    transport_factory: TransportFactory | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    """Watch until ``stop`` is set (or forever), printing each batch."""
    stream = out or sys.stdout
    stop = stop or asyncio.Event()

    def print_batch(event: AggregatedEvent) -> None:
        stream.write(json.dumps(event.to_dict()) + "\n")
        stream.flush()

    async with ChangeAggregator(config, transport_factory) as aggregator:
        aggregator.on_aggregated(print_batch)
        try:
            await aggregator.watch(files, dirs, since)
        except TransportError as e:
            print(f"watchbatch: watch failed: {e}", file=sys.stderr)
            return EXIT_WATCH_FAILED
        await stop.wait()
    return EXIT_OK


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    from watchbatch.config.loader import build_watch_configuration, load_config
    from watchbatch.logging import setup_logging

    root = os.path.abspath(parsed.root)
    config = load_config(root=root)
    if parsed.verbose:
        config.logging.verbose = parsed.verbose
    setup_logging(config.logging)

    try:
        watch_config = build_watch_configuration(
            root, config, debounce_interval=parsed.debounce
        )
    except ConfigurationError as e:
        print(f"watchbatch: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    files = _resolve(root, parsed.files)
    dirs = _resolve(root, parsed.dirs)
    if not files and not dirs:
        dirs = [root]

    try:
        return asyncio.run(run_watch(watch_config, files, dirs, parse_since(parsed.since)))
    except KeyboardInterrupt:
        return EXIT_OK


def main() -> int:
    """Main entry point for the watchbatch CLI."""
    return run_cli(sys.argv[1:])
