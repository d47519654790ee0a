"""Asyncio client for the Watchman service.

Speaks Watchman's JSON protocol over its unix socket. Replies arrive in the
order commands were sent, so pending commands are resolved first-in,
first-out; unilateral PDUs (subscription notifications and logs) are
dispatched to listeners instead.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any

from watchbatch.config.schema import TransportConfig
from watchbatch.errors import FramingError, TransportError
from watchbatch.logging import TRACE, get_logger
from watchbatch.transport.framing import (
    DEFAULT_MAX_PDU_SIZE,
    encode_command,
    is_unilateral,
    read_pdu,
)
from watchbatch.transport.protocol import PDU, PDUListener

log = get_logger("transport")


class WatchmanClient:
    """One connection to the Watchman service.

    Example:
        client = WatchmanClient()
        await client.capability_check(required=["cmd-watch-project"])
        resp = await client.command("watch-project", "/project")
        await client.close()

    The connection is opened lazily by the first command.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        max_pdu_size: int = DEFAULT_MAX_PDU_SIZE,
    ) -> None:
        """Initialize the client.

        Args:
            config: Transport settings (binary, sockname, timeout).
            max_pdu_size: Largest PDU accepted from the service, in bytes.
        """
        self._config = config or TransportConfig()
        self._max_pdu_size = max_pdu_size

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._pending: deque[tuple[str, asyncio.Future[PDU]]] = deque()
        self._listeners: list[PDUListener] = []
        self._write_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()
        self._closed = False

    @property
    def connected(self) -> bool:
        """Whether the socket is open and being read."""
        return self._read_task is not None and not self._read_task.done()

    async def resolve_sockname(self) -> str:
        """Find the Watchman socket path.

        Checks the configured sockname, then WATCHMAN_SOCK, then asks the
        watchman binary via ``get-sockname``.

        Raises:
            TransportError: If the binary is missing or returns an error.
        """
        if self._config.sockname:
            return self._config.sockname

        env_sock = os.environ.get("WATCHMAN_SOCK")
        if env_sock:
            return env_sock

        cmd = [self._config.binary, "--output-encoding=json", "--no-pretty", "get-sockname"]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransportError(
                f"watchman binary not found: {self._config.binary}", command="get-sockname"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._config.timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise TransportError("Timed out running get-sockname", command="get-sockname") from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(
                f"get-sockname failed ({process.returncode}): {message}", command="get-sockname"
            )

        try:
            result = json.loads(stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TransportError(
                f"Unreadable get-sockname output: {e}", command="get-sockname"
            ) from e

        if "error" in result:
            raise TransportError(str(result["error"]), command="get-sockname")
        sockname = result.get("sockname")
        if not sockname:
            raise TransportError("get-sockname returned no sockname", command="get-sockname")
        return str(sockname)

    async def connect(self) -> None:
        """Open the socket and start the reader task."""
        async with self._connect_lock:
            if self.connected:
                return
            if self._closed:
                raise TransportError("Client is closed")

            sockname = await self.resolve_sockname()
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    sockname, limit=self._max_pdu_size
                )
            except OSError as e:
                raise TransportError(f"Cannot connect to {sockname}: {e}") from e

            self._read_task = asyncio.create_task(self._read_loop(self._reader))
            log.debug("Connected to watchman at %s", sockname)

    async def command(self, *args: Any) -> PDU:
        """Send one command and wait for its reply.

        Raises:
            TransportError: On connection failure, timeout, or an ``error``
                field in the reply.
        """
        if not args:
            raise TransportError("Empty command")
        name = str(args[0])
        await self.connect()
        assert self._writer is not None

        data = encode_command(args)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[PDU] = loop.create_future()

        async with self._write_lock:
            self._pending.append((name, future))
            log.log(TRACE, "-> %s", data.rstrip())
            try:
                self._writer.write(data)
                await self._writer.drain()
            except OSError as e:
                self._fail_pending(TransportError(f"Write failed: {e}", command=name))
                raise TransportError(f"Write failed: {e}", command=name) from e

        try:
            response = await asyncio.wait_for(future, timeout=self._config.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out waiting for '{name}'", command=name) from e

        if "error" in response:
            raise TransportError(str(response["error"]), command=name)
        return response

    async def capability_check(
        self,
        required: Sequence[str] = (),
        optional: Sequence[str] = (),
    ) -> PDU:
        """Ask the service for capabilities; fail if a required one is missing."""
        response = await self.command(
            "version", {"required": list(required), "optional": list(optional)}
        )
        capabilities = response.get("capabilities", {})
        missing = [name for name in required if not capabilities.get(name, False)]
        if missing:
            raise TransportError(f"Missing required capabilities: {missing}", command="version")
        return response

    def add_listener(self, callback: PDUListener) -> Callable[[], None]:
        """Register a listener for unilateral PDUs."""
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    async def close(self) -> None:
        """Close the socket; pending commands fail with TransportError."""
        self._closed = True
        self._listeners.clear()

        task = self._read_task
        self._read_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                log.debug("Error while closing watchman socket: %s", e)

        self._fail_pending(TransportError("Connection closed"))
        log.debug("Watchman connection closed")

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                pdu = await read_pdu(reader, max_pdu_size=self._max_pdu_size)
                if pdu is None:
                    log.debug("Watchman closed the connection")
                    break
                log.log(TRACE, "<- %s", pdu)
                if is_unilateral(pdu):
                    self._dispatch(pdu)
                elif self._pending:
                    _, future = self._pending.popleft()
                    if not future.done():
                        future.set_result(pdu)
                else:
                    log.warning("Dropping unexpected watchman response: %s", pdu)
        except (FramingError, OSError) as e:
            log.error("Watchman connection failed: %s", e)
            self._fail_pending(TransportError(f"Connection failed: {e}"))
        finally:
            self._fail_pending(TransportError("Connection closed"))

    def _dispatch(self, pdu: PDU) -> None:
        if "log" in pdu:
            log.info("watchman: %s", str(pdu["log"]).rstrip())
            return
        for listener in list(self._listeners):
            try:
                listener(pdu)
            except Exception:
                log.exception("Error in watchman subscription listener")

    def _fail_pending(self, error: TransportError) -> None:
        while self._pending:
            name, future = self._pending.popleft()
            if not future.done():
                future.set_exception(
                    TransportError(str(error), command=error.command or name)
                )
