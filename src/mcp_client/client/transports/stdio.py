"""
Stdio transport: talks to a server spawned as a child process, exchanging
newline-delimited JSON messages over its stdin and stdout.
"""

import logging
import os
import signal
import sys
from pathlib import Path
from typing import Literal, TextIO

import anyio
from anyio.abc import Process, TaskGroup
from anyio.streams.buffered import BufferedByteReceiveStream
from pydantic import BaseModel, Field

from mcp_client.client.transports.base import MAX_MESSAGE_SIZE, Transport
from mcp_client.shared.exceptions import ConnectError, TransportClosed, TransportError

logger = logging.getLogger(__name__)

# Environment variables to inherit by default
DEFAULT_INHERITED_ENV_VARS = (
    [
        "APPDATA",
        "HOMEDRIVE",
        "HOMEPATH",
        "LOCALAPPDATA",
        "PATH",
        "PATHEXT",
        "PROCESSOR_ARCHITECTURE",
        "SYSTEMDRIVE",
        "SYSTEMROOT",
        "TEMP",
        "USERNAME",
        "USERPROFILE",
    ]
    if sys.platform == "win32"
    else ["HOME", "LOGNAME", "PATH", "SHELL", "TERM", "USER"]
)

# Timeout for process termination before falling back to force kill
PROCESS_TERMINATION_TIMEOUT = 2.0


def get_default_environment() -> dict[str, str]:
    """
    Returns a default environment object including only environment variables deemed
    safe to inherit.
    """
    env: dict[str, str] = {}

    for key in DEFAULT_INHERITED_ENV_VARS:
        value = os.environ.get(key)
        if value is None:
            continue

        if value.startswith("()"):
            # Skip functions, which are a security risk
            continue

        env[key] = value

    return env


class StdioServerParameters(BaseModel):
    command: str
    """The executable to run to start the server."""

    args: list[str] = Field(default_factory=list)
    """Command line arguments to pass to the executable."""

    env: dict[str, str] | None = None
    """
    Extra environment variables for the process, added on top of
    get_default_environment().
    """

    cwd: str | Path | None = None
    """The working directory to use when spawning the process."""

    encoding: str = "utf-8"
    """The text encoding used when sending/receiving messages to the server."""

    encoding_error_handler: Literal["strict", "ignore", "replace"] = "strict"
    """
    The text encoding error handler.

    See https://docs.python.org/3/library/codecs.html#codec-base-classes for
    explanations of possible values
    """


class StdioTransport(Transport):
    """Client transport for stdio.

    The child process lives exactly as long as the transport: closing the
    transport closes the server's stdin, waits briefly for it to exit, then
    terminates its whole process group.
    """

    def __init__(self, server: StdioServerParameters, errlog: TextIO | int | None = sys.stderr) -> None:
        self.server = server
        self._errlog = errlog
        self._process: Process | None = None
        self._stdout: BufferedByteReceiveStream | None = None
        self._closed = False

    @property
    def process(self) -> Process | None:
        return self._process

    @property
    def _transcode(self) -> bool:
        return self.server.encoding.lower().replace("_", "-") not in ("utf-8", "utf8")

    async def open(self, task_group: TaskGroup) -> None:
        if self._process is not None or self._closed:
            raise ConnectError("Stdio transport can only be opened once")

        env = get_default_environment()
        if self.server.env is not None:
            env.update(self.server.env)

        try:
            self._process = await anyio.open_process(
                [self.server.command, *self.server.args],
                env=env,
                cwd=self.server.cwd,
                stderr=self._errlog,
                start_new_session=True,
            )
        except OSError as exc:
            raise ConnectError(f"Failed to start server process {self.server.command!r}: {exc}") from exc

        assert self._process.stdout, "Opened process is missing stdout"
        self._stdout = BufferedByteReceiveStream(self._process.stdout)
        logger.debug("Started server process %s (pid %d)", self.server.command, self._process.pid)

    async def send(self, data: bytes) -> None:
        if self._closed or self._process is None or self._process.stdin is None:
            raise TransportClosed("Stdio transport is not open")
        if b"\n" in data:
            raise TransportError("Message contains a raw newline and cannot be framed")
        if self._transcode:
            data = data.decode("utf-8").encode(self.server.encoding, self.server.encoding_error_handler)

        try:
            await self._process.stdin.send(data + b"\n")
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
            raise TransportClosed("Server process closed its stdin") from exc
        except OSError as exc:
            raise TransportError(f"Failed to write to server process: {exc}") from exc

    async def receive(self) -> bytes:
        if self._stdout is None:
            raise TransportClosed("Stdio transport is not open")

        while True:
            try:
                line = await self._stdout.receive_until(b"\n", MAX_MESSAGE_SIZE)
            except anyio.IncompleteRead as exc:
                raise TransportClosed("Server process closed its stdout") from exc
            except anyio.DelimiterNotFound as exc:
                raise TransportError(f"Server sent a message larger than {MAX_MESSAGE_SIZE} bytes") from exc
            except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
                raise TransportClosed("Stdio transport was closed") from exc

            line = line.rstrip(b"\r")
            if not line.strip():
                continue
            if self._transcode:
                line = line.decode(self.server.encoding, self.server.encoding_error_handler).encode("utf-8")
            return line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        process = self._process
        if process is None:
            return

        # MCP stdio shutdown sequence
        # 1. Close input stream to server
        # 2. Wait for server to exit, or send SIGTERM if it doesn't exit in time
        # 3. Send SIGKILL if still not exited
        if process.stdin:
            try:
                await process.stdin.aclose()
            except (OSError, anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
                logger.debug("Server stdin already closed: %s", exc)

        try:
            with anyio.fail_after(PROCESS_TERMINATION_TIMEOUT):
                await process.wait()
        except TimeoutError:
            logger.info("Server process %d did not exit after stdin closed, terminating it", process.pid)
            await _terminate_process_tree(process)

        await process.aclose()
        logger.debug("Server process %d exited with code %s", process.pid, process.returncode)


async def _terminate_process_tree(process: Process, timeout_seconds: float = PROCESS_TERMINATION_TIMEOUT) -> None:
    """
    Terminate a process and all its children.

    On POSIX the server was started in its own session, so its process group
    is signalled as a whole: SIGTERM first, SIGKILL after ``timeout_seconds``.
    """
    if sys.platform == "win32":
        process.terminate()
        with anyio.move_on_after(timeout_seconds):
            await process.wait()
            return
        process.kill()
        return

    try:
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, signal.SIGTERM)
    except ProcessLookupError:
        return
    except PermissionError as exc:
        logger.warning("Process group termination failed for PID %d: %s, falling back to terminate", process.pid, exc)
        process.terminate()
        pgid = None

    with anyio.move_on_after(timeout_seconds):
        await process.wait()
        return

    logger.warning("Server process %d ignored SIGTERM, killing it", process.pid)
    try:
        if pgid is not None:
            os.killpg(pgid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    await process.wait()
