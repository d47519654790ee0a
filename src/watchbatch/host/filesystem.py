"""Watch-filesystem adapter for build tools.

Presents the aggregator through the interface a bundler's incremental
compiler expects: one ``watch()`` call per compilation, reporting the first
settled batch through a single callback, split into files, directories and
missing paths.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from watchbatch.config.schema import WatchConfiguration
from watchbatch.logging import get_logger
from watchbatch.watching.aggregator import ChangeAggregator, TransportFactory
from watchbatch.watching.events import AggregatedEvent, ChangeEvent

log = get_logger("host")


@runtime_checkable
class InputFileSystem(Protocol):
    """A caching file system whose entries can be invalidated."""

    def purge(self, paths: Sequence[str]) -> None:
        ...


@dataclass
class WatchResult:
    """Paths of one settled batch, partitioned by how they were watched.

    ``file_times`` and ``dir_times`` are the same snapshot of known
    modification times (milliseconds).
    """

    files: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    file_times: dict[str, float] = field(default_factory=dict)
    dir_times: dict[str, float] = field(default_factory=dict)


WatchCallback = Callable[["BaseException | None", "WatchResult | None"], None]
UndelayedCallback = Callable[[str, float], None]


class Watching:
    """Handle returned by WatchFileSystem.watch().

    close() and pause() act on the aggregator this handle was created with,
    not on whichever aggregator a later watch() call started.
    """

    def __init__(self, aggregator: ChangeAggregator, task: asyncio.Task[None]) -> None:
        self._aggregator = aggregator
        self._task = task

    @property
    def aggregator(self) -> ChangeAggregator:
        return self._aggregator

    @property
    def started(self) -> asyncio.Task[None]:
        """Task running the aggregator's watch(); done once it is ready or failed."""
        return self._task

    def close(self) -> None:
        self._aggregator.close()

    def pause(self) -> None:
        self._aggregator.pause()


class WatchFileSystem:
    """Creates one aggregator per watch() call and retires the previous one.

    Example:
        fs = WatchFileSystem(WatchConfiguration(root_path="/project"), cache)
        watching = fs.watch(files, dirs, missing, start_time, on_done)
        ...
        watching.close()
    """

    def __init__(
        self,
        config: WatchConfiguration,
        input_file_system: InputFileSystem | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._input_file_system = input_file_system
        self._transport_factory = transport_factory
        self._aggregator: ChangeAggregator | None = None

    @property
    def aggregator(self) -> ChangeAggregator | None:
        """The aggregator created by the most recent watch() call."""
        return self._aggregator

    def watch(
        self,
        files: Sequence[str],
        dirs: Sequence[str],
        missing: Sequence[str],
        start_time: str | float,
        callback: WatchCallback,
        callback_undelayed: UndelayedCallback | None = None,
    ) -> Watching:
        """Start watching and report the first settled batch.

        Must be called from a running event loop. ``callback(None, result)``
        runs once for the first aggregated batch; if starting the watch
        fails, ``callback(error, None)`` runs instead.
        ``callback_undelayed(path, mtime)`` runs for the first live change.

        Args:
            files: Files the compilation read.
            dirs: Directories the compilation listed.
            missing: Paths the compilation looked for but did not find.
            start_time: Millisecond timestamp (or transport clock) to report
                changes from.
            callback: Receives the error or the partitioned batch.
            callback_undelayed: Receives the first change as it happens.
        """
        old_aggregator = self._aggregator
        aggregator = ChangeAggregator(self._config, self._transport_factory)
        self._aggregator = aggregator

        file_set = set(files)
        dir_set = set(dirs)
        missing_set = set(missing)

        if callback_undelayed is not None:
            undelayed = callback_undelayed

            def on_change(event: ChangeEvent) -> None:
                undelayed(event.path, event.mtime)

            aggregator.on_change(on_change, once=True)

        def on_aggregated(event: AggregatedEvent) -> None:
            changes = event.paths
            if self._input_file_system is not None:
                self._input_file_system.purge(list(changes))

            times = aggregator.get_snapshot()
            callback(
                None,
                WatchResult(
                    files=[path for path in changes if path in file_set],
                    dirs=[path for path in changes if path in dir_set],
                    missing=[path for path in changes if path in missing_set],
                    file_times=times,
                    dir_times=dict(times),
                ),
            )

        aggregator.on_aggregated(on_aggregated, once=True)

        task = asyncio.get_running_loop().create_task(
            aggregator.watch([*files, *missing], dirs, start_time)
        )

        def on_started(done: asyncio.Task[None]) -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                log.debug("Watch failed to start: %s", error)
                callback(error, None)

        task.add_done_callback(on_started)

        if old_aggregator is not None:
            old_aggregator.close()

        return Watching(aggregator, task)
