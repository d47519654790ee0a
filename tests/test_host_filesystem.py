"""Tests for the watch-filesystem host adapter."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from watchbatch.config.schema import WatchConfiguration
from watchbatch.errors import TransportError
from watchbatch.host.filesystem import WatchFileSystem, WatchResult
from watchbatch.watching.state import SessionState

from tests.utils import FakeTransport, changed, make_files, removed, wait_for_condition

BASE_MTIME = 1_600_000_000_000


class PurgingCache:
    """Input file system double that records purges."""

    def __init__(self) -> None:
        self.purged: list[list[str]] = []

    def purge(self, paths) -> None:
        self.purged.append(list(paths))


class Callbacks:
    def __init__(self) -> None:
        self.results: list[tuple[BaseException | None, WatchResult | None]] = []
        self.undelayed: list[tuple[str, float]] = []

    def done(self, error: BaseException | None, result: WatchResult | None) -> None:
        self.results.append((error, result))

    def change(self, path: str, mtime: float) -> None:
        self.undelayed.append((path, mtime))


@pytest.fixture
def transports(tmp_path: Path) -> list[FakeTransport]:
    return []


@pytest.fixture
def cache() -> PurgingCache:
    return PurgingCache()


@pytest.fixture
def file_system(tmp_path: Path, transports, cache) -> WatchFileSystem:
    def factory(config: WatchConfiguration) -> FakeTransport:
        transport = FakeTransport(str(tmp_path))
        transports.append(transport)
        return transport

    config = WatchConfiguration(root_path=str(tmp_path), debounce_interval=0.05)
    return WatchFileSystem(config, cache, transport_factory=factory)


class TestWatchFileSystem:
    """Tests for WatchFileSystem.watch."""

    @pytest.mark.asyncio
    async def test_reports_partitioned_batch(self, tmp_path: Path, file_system, transports, cache):
        files = make_files(tmp_path, ["src/a.js", "src/b.js"], mtime_ms=BASE_MTIME)
        src = str(tmp_path / "src")
        os.utime(src, ns=(BASE_MTIME * 1_000_000, BASE_MTIME * 1_000_000))
        missing = str(tmp_path / "src/c.js")
        callbacks = Callbacks()

        watching = file_system.watch(
            files, [src], [missing], BASE_MTIME, callbacks.done, callbacks.change
        )
        await watching.started

        transports[0].push(
            [
                changed("src/b.js", BASE_MTIME + 5000),
                changed("src", BASE_MTIME + 5000),
                changed("src/c.js", BASE_MTIME + 5000),
                removed("src/a.js"),
            ]
        )
        await wait_for_condition(lambda: callbacks.results)

        error, result = callbacks.results[0]
        assert error is None
        assert result is not None
        assert result.files == sorted(files)
        assert result.dirs == [src]
        assert result.missing == [missing]
        assert result.file_times == result.dir_times
        assert files[0] not in result.file_times
        assert result.file_times[files[1]] == BASE_MTIME + 5000 + 2000
        assert cache.purged == [sorted([*files, src, missing])]
        await watching.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_callbacks_fire_once(self, tmp_path: Path, file_system, transports):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        callbacks = Callbacks()

        watching = file_system.watch(files, [], [], BASE_MTIME, callbacks.done, callbacks.change)
        await watching.started

        transports[0].push([changed("a.js", BASE_MTIME + 5000)])
        transports[0].push([changed("a.js", BASE_MTIME + 6000)])
        await wait_for_condition(lambda: callbacks.results)
        transports[0].push([changed("a.js", BASE_MTIME + 7000)])
        await asyncio.sleep(0.15)

        assert callbacks.undelayed == [(files[0], BASE_MTIME + 5000)]
        assert len(callbacks.results) == 1
        await watching.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_missing_paths_are_watched(self, tmp_path: Path, file_system, transports):
        missing = str(tmp_path / "later.js")
        callbacks = Callbacks()

        watching = file_system.watch([], [], [missing], BASE_MTIME, callbacks.done)
        await watching.started

        query = transports[0].commands[2][3]
        assert query["expression"] == ["allof", ["name", ["later.js"], "wholename"]]
        await watching.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_new_watch_closes_previous(self, tmp_path: Path, file_system, transports):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        first = file_system.watch(files, [], [], BASE_MTIME, Callbacks().done)
        await first.started

        second = file_system.watch(files, [], [], BASE_MTIME, Callbacks().done)
        await second.started
        await wait_for_condition(lambda: transports[0].close_count == 1)

        assert first.aggregator.state is SessionState.CLOSED
        assert second.aggregator.state is SessionState.ACTIVE
        assert file_system.aggregator is second.aggregator
        await second.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_stale_handle_leaves_newer_watch_alone(
        self, tmp_path: Path, file_system, transports
    ):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        first = file_system.watch(files, [], [], BASE_MTIME, Callbacks().done)
        await first.started
        callbacks = Callbacks()
        second = file_system.watch(files, [], [], BASE_MTIME, callbacks.done, callbacks.change)
        await second.started

        first.pause()
        first.close()
        transports[1].push([changed("a.js", BASE_MTIME + 5000)])
        await wait_for_condition(lambda: callbacks.results)

        assert first.aggregator.state is SessionState.CLOSED
        assert second.aggregator.state is SessionState.ACTIVE
        assert callbacks.undelayed
        await second.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_pause(self, tmp_path: Path, file_system, transports):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        callbacks = Callbacks()
        watching = file_system.watch(files, [], [], BASE_MTIME, callbacks.done, callbacks.change)
        await watching.started

        watching.pause()
        transports[0].push([changed("a.js", BASE_MTIME + 5000)])
        await asyncio.sleep(0.1)

        assert callbacks.undelayed == []
        assert callbacks.results == []
        await watching.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_watch_failure_reported_to_callback(self, tmp_path: Path, cache):
        def factory(config: WatchConfiguration) -> FakeTransport:
            transport = FakeTransport(str(tmp_path))
            transport.fail("subscribe", "watchman is down")
            return transport

        file_system = WatchFileSystem(
            WatchConfiguration(root_path=str(tmp_path)), cache, transport_factory=factory
        )
        callbacks = Callbacks()

        watching = file_system.watch([], [], [], BASE_MTIME, callbacks.done)
        with pytest.raises(TransportError):
            await watching.started

        assert len(callbacks.results) == 1
        error, result = callbacks.results[0]
        assert isinstance(error, TransportError)
        assert result is None

    @pytest.mark.asyncio
    async def test_without_input_file_system(self, tmp_path: Path):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        transport = FakeTransport(str(tmp_path))
        file_system = WatchFileSystem(
            WatchConfiguration(root_path=str(tmp_path), debounce_interval=0.05),
            transport_factory=lambda config: transport,
        )
        callbacks = Callbacks()

        watching = file_system.watch(files, [], [], BASE_MTIME, callbacks.done)
        await watching.started
        transport.push([changed("a.js", BASE_MTIME + 5000)])
        await wait_for_condition(lambda: callbacks.results)

        assert callbacks.results[0][1].files == files
        await watching.aggregator.aclose()

    @pytest.mark.asyncio
    async def test_close(self, tmp_path: Path, file_system, transports):
        files = make_files(tmp_path, ["a.js"], mtime_ms=BASE_MTIME)
        watching = file_system.watch(files, [], [], BASE_MTIME, Callbacks().done)
        await watching.started

        watching.close()
        watching.close()
        await wait_for_condition(lambda: transports[0].close_count == 1)

        assert watching.aggregator.state is SessionState.CLOSED
        assert "unsubscribe" in transports[0].command_names
