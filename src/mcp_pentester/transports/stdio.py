"""stdio transport for mcp-pentester.

Spawns the target MCP server as a subprocess and speaks newline-delimited
JSON-RPC over its stdin/stdout. stderr is surfaced verbatim as ``stderr``
events so an operator can watch the server's own diagnostics.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import subprocess

import anyio
from anyio.abc import Process
from anyio.streams.text import TextReceiveStream
from mcp.types import JSONRPCMessage

from mcp_pentester.correlation import parse_message, to_wire
from mcp_pentester.errors import (
    FramingError,
    TransportClosedError,
    TransportConnectionError,
    TransportError,
)
from mcp_pentester.events import EventHub
from mcp_pentester.models import TransportType
from mcp_pentester.transports.base import REQUEST_TIMEOUT, JsonRpcCorrelator, TransportEvent

logger = logging.getLogger(__name__)

# Seconds between terminate() and kill() on disconnect
TERMINATE_GRACE = 2.0


class LineBuffer:
    """Reassembles newline-delimited lines from arbitrary chunks.

    A partial line is held until a later chunk completes it. Blank lines are
    skipped and a trailing carriage return is stripped.

    Example:
        >>> buf = LineBuffer()
        >>> buf.feed('{"a":')
        []
        >>> buf.feed('1}\\n')
        ['{"a":1}']
    """

    def __init__(self) -> None:
        self._partial = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._partial

    def feed(self, chunk: str) -> list[str]:
        """Append a chunk and return every line it completes."""
        *lines, self._partial = (self._partial + chunk).split("\n")
        return [line.rstrip("\r") for line in lines if line.strip()]


class StdioTransport:
    """Subprocess transport.

    Args:
        command: Executable to run as the MCP server.
        args: Command-line arguments for the server.
        env: Variables merged over the inherited environment.
        timeout: Per-request timeout in seconds.

    Example:
        transport = StdioTransport("python", ["server.py"])
        await transport.connect()
        result = await transport.rpc.request("tools/list")
    """

    transport_type = TransportType.STDIO

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.events = EventHub()
        self.rpc = JsonRpcCorrelator(self.send, self.events, timeout=timeout)
        self._buffer = LineBuffer()
        self._process: Process | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._closing = False

    @property
    def connected(self) -> bool:
        """True while the subprocess is running."""
        return self._process is not None and self._process.returncode is None

    async def connect(self) -> None:
        """Spawn the server process and start the reader tasks.

        Raises:
            TransportConnectionError: If the process cannot be spawned.
        """
        self._closing = False
        self._buffer = LineBuffer()
        try:
            process = await anyio.open_process(
                [self.command, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env={**os.environ, **self.env},
            )
        except OSError as exc:
            raise TransportConnectionError(f"Failed to start {self.command}: {exc}", cause=exc) from exc

        self._process = process
        logger.debug("Spawned %s (pid %s)", self.command, process.pid)
        stdout_task = asyncio.create_task(self._read_stdout(process), name="stdio-stdout-reader")
        self._tasks = [
            stdout_task,
            asyncio.create_task(self._read_stderr(process), name="stdio-stderr-reader"),
            asyncio.create_task(self._watch_exit(process, stdout_task), name="stdio-exit-watcher"),
        ]
        self.events.emit(TransportEvent.CONNECTED)

    async def disconnect(self) -> None:
        """Terminate the process and reject pending requests. Safe to call multiple times."""
        self._closing = True
        process = self._process
        self._process = None
        if process is not None:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE)
                except TimeoutError:
                    logger.debug("Process %s ignored terminate, killing", process.pid)
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
        for task in self._tasks:
            if not task.done():
                task.cancel()
            await _reap(task)
        self._tasks = []
        if process is not None:
            await process.aclose()
        self.rpc.reject_all(TransportClosedError("Transport disconnected"))

    async def send(self, message: JSONRPCMessage) -> None:
        """Write one message as a single line to the server's stdin.

        Raises:
            TransportError: If the process is not running or the write fails.
        """
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            raise TransportError("Transport not connected")
        self.events.emit(TransportEvent.SEND, message)
        line = to_wire(message) + "\n"
        try:
            await process.stdin.send(line.encode("utf-8"))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as exc:
            raise TransportError(f"Failed to write to {self.command}: {exc}", cause=exc) from exc

    def handle_output(self, chunk: str) -> None:
        """Feed a chunk of stdout text through line reassembly and dispatch.

        A line that fails to parse is reported as an ``error`` event and the
        remaining lines are still processed.
        """
        for line in self._buffer.feed(chunk):
            try:
                message = parse_message(line)
            except FramingError as exc:
                logger.warning("Malformed line from %s: %s", self.command, line[:200])
                self.events.emit(TransportEvent.ERROR, exc)
                continue
            self.rpc.deliver(message)

    async def _read_stdout(self, process: Process) -> None:
        assert process.stdout is not None
        try:
            async for chunk in TextReceiveStream(process.stdout, errors="replace"):
                self.handle_output(chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            if not self._closing:
                logger.debug("stdout closed", exc_info=True)

    async def _read_stderr(self, process: Process) -> None:
        assert process.stderr is not None
        try:
            async for chunk in TextReceiveStream(process.stderr, errors="replace"):
                logger.debug("[%s stderr] %s", self.command, chunk.rstrip())
                self.events.emit(TransportEvent.STDERR, chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            if not self._closing:
                logger.debug("stderr closed", exc_info=True)

    async def _watch_exit(self, process: Process, stdout_task: asyncio.Task[None]) -> None:
        """Wait for the process to exit, then drain stdout and report."""
        code = await process.wait()
        # Let the stdout reader finish the lines written before exit
        await _reap(stdout_task)
        logger.debug("%s exited with code %s", self.command, code)
        self.events.emit(TransportEvent.EXIT, code)
        if not self._closing:
            self.rpc.reject_all(TransportClosedError(f"Server process exited with code {code}"))
            self.events.emit(TransportEvent.DISCONNECTED)


async def _reap(task: asyncio.Task[None]) -> None:
    """Wait for a reader task, logging a failure instead of raising it."""
    try:
        await task
    except asyncio.CancelledError:
        if not task.cancelled():
            raise
    except Exception:
        logger.warning("Task %s failed", task.get_name(), exc_info=True)
