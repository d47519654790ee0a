"""Baseline scan of watched paths.

Stats run in the default executor with a fixed cap on how many are in
flight. Results are applied on the event loop, one at a time, so the caller's
``record`` callback never runs concurrently with itself or with event
delivery.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from watchbatch.errors import ScanError
from watchbatch.logging import TRACE, get_logger

log = get_logger("scan")


@dataclass
class ScanResult:
    """Outcome of a baseline scan."""

    recorded: int = 0
    failed: list[ScanError] = field(default_factory=list)
    abandoned: bool = False  # Stopped applying results (session superseded)


def stat_mtime_ms(path: str) -> int:
    """Return the modification time of ``path`` in whole milliseconds.

    Raises:
        ScanError: If the path cannot be stat'ed.
    """
    try:
        return os.stat(path).st_mtime_ns // 1_000_000
    except OSError as e:
        raise ScanError(path, e.strerror or str(e)) from e
    except ValueError as e:
        # Embedded NUL bytes and similar unrepresentable paths
        raise ScanError(path, str(e)) from e


async def baseline_scan(
    paths: Iterable[str],
    record: Callable[[str, float], None],
    *,
    concurrency: int = 500,
    is_current: Callable[[], bool] | None = None,
    stat: Callable[[str], float] = stat_mtime_ms,
) -> ScanResult:
    """Stat every path and hand its mtime to ``record``.

    A path that cannot be stat'ed (typically one that does not exist yet) is
    logged and skipped; it never aborts the scan.

    Args:
        paths: Paths to stat. Duplicates are scanned once.
        record: Called on the event loop with (path, mtime_ms).
        concurrency: Maximum number of stats in flight.
        is_current: Checked before each result is applied; once it returns
            False the remaining results are discarded.
        stat: Blocking stat function returning milliseconds.

    Returns:
        ScanResult with counts and per-path failures.
    """
    loop = asyncio.get_running_loop()
    semaphore = asyncio.Semaphore(concurrency)
    result = ScanResult()
    unique = list(dict.fromkeys(paths))

    async def scan_one(path: str) -> None:
        async with semaphore:
            try:
                mtime = await loop.run_in_executor(None, stat, path)
            except ScanError as e:
                log.debug("Baseline scan skipped %s: %s", path, e.reason)
                result.failed.append(e)
                return

        if is_current is not None and not is_current():
            result.abandoned = True
            return
        log.log(TRACE, "Baseline %s mtime=%s", path, mtime)
        record(path, mtime)
        result.recorded += 1

    log.debug("Starting baseline scan of %d paths", len(unique))
    await asyncio.gather(*(scan_one(path) for path in unique))
    log.debug(
        "Baseline scan finished: %d recorded, %d skipped",
        result.recorded,
        len(result.failed),
    )
    return result
