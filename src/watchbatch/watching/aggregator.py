"""Debounced aggregation of file change notifications.

The ChangeAggregator seeds a table of known modification times with a
baseline scan, subscribes to a change-notification transport, and turns the
resulting stream of per-file events into:

- ``change``/``removal`` events, one per live notification, undelayed
- one ``aggregated`` event per debounce window, once activity has been
  quiet for ``debounce_interval`` seconds

All state is owned by the event loop the aggregator runs on. Notification
delivery, timer callbacks and scan results are all serialized there, so no
locking is needed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from watchbatch.config.schema import WatchConfiguration
from watchbatch.errors import ConfigurationError
from watchbatch.logging import TRACE, get_logger
from watchbatch.transport.protocol import WatchTransport
from watchbatch.transport.subscription import SubscriptionAdapter
from watchbatch.watching.batch import PendingBatch
from watchbatch.watching.events import (
    AggregatedEvent,
    ChangeEvent,
    EventHub,
    EventKind,
    RemovalEvent,
)
from watchbatch.watching.resolution import ResolutionEstimator
from watchbatch.watching.scan import ScanResult, baseline_scan
from watchbatch.watching.state import SessionState

log = get_logger("aggregator")

TransportFactory = Callable[[WatchConfiguration], WatchTransport]


def default_transport_factory(config: WatchConfiguration) -> WatchTransport:
    """Build a WatchmanClient from the loaded transport settings."""
    from watchbatch.config.loader import load_config
    from watchbatch.transport.client import WatchmanClient

    return WatchmanClient(load_config(root=config.root_path).transport)


@dataclass
class _Session:
    """Per-watch resources. Replaced wholesale by each new session."""

    number: int
    loop: asyncio.AbstractEventLoop
    adapter: SubscriptionAdapter | None = None
    # Latest event per path received while the baseline scan runs, in arrival order.
    # None once the scan has finished.
    scan_queue: dict[str, float | None] | None = field(default_factory=dict)
    scan_task: asyncio.Task[ScanResult] | None = None
    start_task: asyncio.Task[None] | None = None


class ChangeAggregator:
    """Watches paths under a root and reports settled batches of changes.

    Example:
        config = WatchConfiguration(root_path="/project")
        aggregator = ChangeAggregator(config)
        aggregator.on_aggregated(lambda e: print(e.changed, e.removed))
        await aggregator.watch(["/project/a.txt"], ["/project/src"], since=time.time() * 1000)
        ...
        await aggregator.aclose()

    Lifecycle: IDLE -> SCANNING -> ACTIVE <-> PAUSED -> CLOSED. A paused
    aggregator drops notifications until watch() is called again.
    """

    def __init__(
        self,
        config: WatchConfiguration,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            config: Validated watch settings.
            transport_factory: Builds the transport for each session.
                Defaults to a WatchmanClient.

        Raises:
            ConfigurationError: If config is not a WatchConfiguration.
        """
        if not isinstance(config, WatchConfiguration):
            raise ConfigurationError("ChangeAggregator requires a WatchConfiguration")

        self._config = config
        self._transport_factory = transport_factory or default_transport_factory

        self._state = SessionState.IDLE
        self._hub = EventHub()
        self._times: dict[str, float] = {}
        self._estimator = ResolutionEstimator()
        self._pending = PendingBatch()
        self._flush_handle: asyncio.TimerHandle | None = None
        self._cursor: str | None = None

        self._session: _Session | None = None
        self._session_count = 0
        self._release_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> WatchConfiguration:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cursor(self) -> str | None:
        """Clock of the most recently processed notification batch."""
        return self._cursor

    @property
    def resolution(self) -> int:
        """Current timestamp resolution estimate in milliseconds."""
        return self._estimator.current

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_change(
        self, callback: Callable[[ChangeEvent], None], *, once: bool = False
    ) -> Callable[[], None]:
        """Listen for undelayed per-file changes. Returns an unregister function."""
        return self._hub.subscribe(EventKind.CHANGE, callback, once=once)

    def on_removal(
        self, callback: Callable[[RemovalEvent], None], *, once: bool = False
    ) -> Callable[[], None]:
        """Listen for undelayed per-file removals. Returns an unregister function."""
        return self._hub.subscribe(EventKind.REMOVAL, callback, once=once)

    def on_aggregated(
        self, callback: Callable[[AggregatedEvent], None], *, once: bool = False
    ) -> Callable[[], None]:
        """Listen for settled batches. Returns an unregister function."""
        return self._hub.subscribe(EventKind.AGGREGATED, callback, once=once)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def watch(
        self,
        files: Iterable[str],
        dirs: Iterable[str],
        since: str | float,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        """Start (or resume) watching.

        Runs the baseline scan and the subscription concurrently and returns
        once both have finished. Calling it while a session is starting or
        active waits for / keeps that session; calling it while paused
        resumes; otherwise a new session starts.

        Args:
            files: File paths of interest.
            dirs: Directory paths of interest.
            since: A transport clock (str) or a millisecond timestamp to
                report changes from.
            on_ready: Called once the session is ready.

        Raises:
            TransportError: If capability negotiation or subscribing fails.
                The session is torn down and the aggregator returns to IDLE.
        """
        session = self._session
        if session is not None and self._state.is_live:
            if self._state is SessionState.PAUSED:
                self._resume(session)
            else:
                log.debug("watch() while %s: keeping current session", self._state.value)
            if session.start_task is not None and not session.start_task.done():
                await asyncio.shield(session.start_task)
            if session is self._session and on_ready is not None:
                on_ready()
            return

        paths = list(dict.fromkeys([*files, *dirs]))
        session = self._begin_session()
        if isinstance(since, str):
            self._cursor = since

        log.info(
            "Watching %d paths under %s (session %d)",
            len(paths),
            self._config.root_path,
            session.number,
        )
        session.start_task = asyncio.create_task(self._start(session, paths, since))
        await asyncio.shield(session.start_task)

        if session is self._session and on_ready is not None:
            on_ready()

    def get_snapshot(self) -> dict[str, float]:
        """Return a copy of the known modification times."""
        return dict(self._times)

    def pause(self) -> None:
        """Stop reacting to notifications until watch() is called again.

        Cancels any pending debounce timer. The subscription stays open.
        Safe to call repeatedly and from inside a listener.
        """
        if self._state not in (SessionState.SCANNING, SessionState.ACTIVE):
            return
        self._cancel_flush()
        self._state = self._state.transition(SessionState.PAUSED)
        log.debug("Paused")

    def close(self) -> None:
        """Tear the session down.

        Cancels the debounce timer and the baseline scan, detaches all
        listeners, and starts releasing the transport (unsubscribe, then
        disconnect). Safe to call repeatedly, before watch(), and from
        inside a listener. Use aclose() to also wait for the release.
        """
        if self._state is SessionState.CLOSED:
            return

        self._cancel_flush()
        self._hub.clear()
        self._state = self._state.transition(SessionState.CLOSED)

        session = self._session
        self._session = None
        if session is None:
            return

        if session.scan_task is not None and not session.scan_task.done():
            session.scan_task.cancel()
        session.scan_queue = None
        if session.adapter is not None:
            task = session.loop.create_task(session.adapter.close())
            self._release_tasks.add(task)
            task.add_done_callback(self._release_tasks.discard)
        log.info("Closed session %d", session.number)

    async def aclose(self) -> None:
        """close() and wait until the transport has been released."""
        self.close()
        if self._release_tasks:
            await asyncio.gather(*self._release_tasks, return_exceptions=True)

    async def __aenter__(self) -> ChangeAggregator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Session startup
    # ------------------------------------------------------------------

    def _begin_session(self) -> _Session:
        self._session_count += 1
        session = _Session(number=self._session_count, loop=asyncio.get_running_loop())
        transport = self._transport_factory(self._config)
        session.adapter = SubscriptionAdapter(
            transport,
            self._config.root_path,
            self._config.subscription_name,
            deliver=lambda path, mtime: self._on_notification(session, path, mtime),
            on_clock=lambda clock: self._on_clock(session, clock),
        )
        self._state = self._state.transition(SessionState.SCANNING)
        self._session = session
        return session

    async def _start(self, session: _Session, paths: list[str], since: str | float) -> None:
        assert session.adapter is not None
        session.scan_task = asyncio.create_task(self._run_scan(session, paths))
        subscribe_task = asyncio.create_task(session.adapter.subscribe(paths, since))
        tasks = {session.scan_task, subscribe_task}

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        error = _first_error(done)
        if pending:
            # Let the other operation finish before reporting anything
            await asyncio.wait(pending)
            if error is None:
                error = _first_error(pending)

        if session is not self._session:
            log.debug("Session %d was closed while starting", session.number)
            return

        if error is not None:
            log.error("Watch failed: %s", error)
            await self._abort_session(session)
            raise error

        log.debug("Session %d ready", session.number)

    async def _run_scan(self, session: _Session, paths: list[str]) -> ScanResult:
        result = await baseline_scan(
            paths,
            self._record_time,
            concurrency=self._config.scan_concurrency,
            is_current=lambda: session is self._session,
        )
        if session is not self._session or session.scan_queue is None:
            return result

        queued = session.scan_queue
        session.scan_queue = None
        if self._state is SessionState.SCANNING:
            self._state = self._state.transition(SessionState.ACTIVE)

        if queued:
            log.debug("Replaying %d events queued during the baseline scan", len(queued))
        for path, mtime in queued.items():
            self._apply(path, mtime)
        return result

    async def _abort_session(self, session: _Session) -> None:
        self._cancel_flush()
        self._session = None
        self._state = self._state.transition(SessionState.IDLE)
        if session.scan_task is not None and not session.scan_task.done():
            session.scan_task.cancel()
        if session.adapter is not None:
            await session.adapter.close()

    def _resume(self, session: _Session) -> None:
        if session.scan_queue is not None:
            self._state = self._state.transition(SessionState.SCANNING)
        else:
            self._state = self._state.transition(SessionState.ACTIVE)
            if self._pending:
                self._schedule_flush()
        log.debug("Resumed (%s)", self._state.value)

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def _on_clock(self, session: _Session, clock: str) -> None:
        if session is self._session:
            self._cursor = clock

    def _on_notification(self, session: _Session, path: str, mtime: float | None) -> None:
        if session is not self._session:
            return
        if self._state is SessionState.PAUSED:
            log.log(TRACE, "Paused, dropping event for %s", path)
            return
        if session.scan_queue is not None:
            log.log(TRACE, "Queueing event for %s until the baseline scan finishes", path)
            # Replay follows the order of each path's latest event
            session.scan_queue.pop(path, None)
            session.scan_queue[path] = mtime
            return
        if self._state is SessionState.ACTIVE:
            self._apply(path, mtime)

    def _record_time(self, path: str, mtime: float) -> None:
        self._times[path] = self._estimator.record(mtime)

    def _apply(self, path: str, mtime: float | None) -> None:
        """Fold one event into the known times and, when active, the batch."""
        if mtime is None:
            self._times.pop(path, None)
        else:
            known = self._times.get(path)
            recorded = self._estimator.record(mtime)
            if known is not None and recorded <= known:
                log.log(TRACE, "Ignoring unchanged time for %s", path)
                return
            self._times[path] = recorded

        if self._state is not SessionState.ACTIVE:
            return

        if mtime is None:
            self._hub.emit(RemovalEvent(path))
            self._pending.add_removal(path)
        else:
            self._hub.emit(ChangeEvent(path, mtime))
            self._pending.add_change(path)

        # A listener may have paused or closed us
        if self._state is SessionState.ACTIVE:
            self._schedule_flush()

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def _schedule_flush(self) -> None:
        self._cancel_flush()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self._config.debounce_interval, self._flush)

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _flush(self) -> None:
        self._flush_handle = None
        if self._state is not SessionState.ACTIVE:
            return
        changed, removed = self._pending.drain()
        log.debug("Aggregated %d changed, %d removed", len(changed), len(removed))
        self._hub.emit(AggregatedEvent(changed=changed, removed=removed, cursor=self._cursor))


def _first_error(tasks: Iterable[asyncio.Task[Any]]) -> BaseException | None:
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            return task.exception()
    return None
