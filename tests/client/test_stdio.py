import subprocess
import sys
import time
from pathlib import Path

import anyio
import pytest

from mcp_client.client.session import ClientSession, SessionState
from mcp_client.client.transports.stdio import (
    StdioServerParameters,
    StdioTransport,
    get_default_environment,
)
from mcp_client.shared.exceptions import ConnectError, ConnectionLost, DecodeError, ToolNotFound, TransportError
from mcp_client.types import JSONRPCNotification, TextContent

pytestmark = pytest.mark.anyio

SERVER_SCRIPT = str(Path(__file__).parent.parent / "stdio_server.py")


def server_parameters(**kwargs) -> StdioServerParameters:
    return StdioServerParameters(command=sys.executable, args=[SERVER_SCRIPT], **kwargs)


async def test_stdio_session():
    transport = StdioTransport(server_parameters(), errlog=subprocess.DEVNULL)

    async with ClientSession() as session:
        result = await session.connect(transport)
        assert result.serverInfo.name == "stdio-test-server"

        tools = await session.list_tools()
        assert [tool.name for tool in tools] == ["echo", "env", "crash", "garbage"]

        echoed = await session.call_tool("echo", {"text": "héllo wörld"})
        assert echoed.content == [TextContent(type="text", text="héllo wörld")]

        with pytest.raises(ToolNotFound):
            await session.call_tool("missing")

    assert session.state is SessionState.CLOSED
    assert transport.process is not None
    assert transport.process.returncode is not None


async def test_stdio_environment_is_restricted(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MCP_TEST_SECRET", "leaked")
    transport = StdioTransport(server_parameters(env={"MCP_TEST_EXTRA": "given"}), errlog=subprocess.DEVNULL)

    async with ClientSession() as session:
        await session.connect(transport)
        secret = await session.call_tool("env", {"name": "MCP_TEST_SECRET"})
        extra = await session.call_tool("env", {"name": "MCP_TEST_EXTRA"})

    assert secret.content == [TextContent(type="text", text="<unset>")]
    assert extra.content == [TextContent(type="text", text="given")]


async def test_server_crash_mid_request():
    transport = StdioTransport(server_parameters(), errlog=subprocess.DEVNULL)

    async with ClientSession() as session:
        await session.connect(transport)

        with anyio.fail_after(5):
            with pytest.raises(ConnectionLost):
                await session.call_tool("crash")

        assert session.state is SessionState.FAILED


async def test_malformed_line_is_skipped():
    received: list[JSONRPCNotification | DecodeError] = []

    async def handler(message: JSONRPCNotification | DecodeError) -> None:
        received.append(message)

    transport = StdioTransport(server_parameters(), errlog=subprocess.DEVNULL)
    async with ClientSession(notification_handler=handler) as session:
        await session.connect(transport)
        result = await session.call_tool("garbage")

    assert result.content == [TextContent(type="text", text="after garbage")]
    assert len(received) == 1
    assert isinstance(received[0], DecodeError)


async def test_nonexistent_command():
    transport = StdioTransport(StdioServerParameters(command="/path/to/nonexistent/command"))

    async with ClientSession() as session:
        with pytest.raises(ConnectError):
            await session.connect(transport)
        assert session.state is SessionState.FAILED


async def test_server_exiting_before_handshake():
    transport = StdioTransport(
        StdioServerParameters(command=sys.executable, args=["-c", "pass"]), errlog=subprocess.DEVNULL
    )

    async with ClientSession() as session:
        with anyio.fail_after(5):
            with pytest.raises(ConnectError):
                await session.connect(transport)


async def test_close_terminates_unresponsive_server():
    """A server ignoring stdin EOF is terminated after the grace period."""
    script = "import signal, time\nsignal.signal(signal.SIGTERM, signal.SIG_IGN)\ntime.sleep(60)"
    if sys.platform == "win32":
        script = "import time\ntime.sleep(60)"
    transport = StdioTransport(
        StdioServerParameters(command=sys.executable, args=["-c", script]), errlog=subprocess.DEVNULL
    )

    async with anyio.create_task_group() as tg:
        await transport.open(tg)
        start = time.monotonic()
        with anyio.fail_after(10):
            await transport.close()
        elapsed = time.monotonic() - start

    assert transport.process is not None
    assert transport.process.returncode is not None
    assert elapsed < 8
    await transport.close()


async def test_close_with_stdin_already_closed():
    transport = StdioTransport(server_parameters(), errlog=subprocess.DEVNULL)

    async with anyio.create_task_group() as tg:
        await transport.open(tg)
        assert transport.process is not None and transport.process.stdin is not None
        await transport.process.stdin.aclose()

        with anyio.fail_after(10):
            await transport.close()

    assert transport.process.returncode is not None


async def test_send_rejects_embedded_newline():
    transport = StdioTransport(server_parameters(), errlog=subprocess.DEVNULL)

    async with anyio.create_task_group() as tg:
        await transport.open(tg)
        try:
            with pytest.raises(TransportError):
                await transport.send(b'{"jsonrpc":"2.0",\n"method":"ping"}')
        finally:
            await transport.close()


def test_default_environment_skips_shell_functions(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PATH", "/usr/bin")
    monkeypatch.setenv("SHELL", "() { evil; }")

    env = get_default_environment()

    assert env["PATH"] == "/usr/bin"
    assert "SHELL" not in env
