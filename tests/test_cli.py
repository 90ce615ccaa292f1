import shlex
import sys
from pathlib import Path

import anyio
import pytest
from click.testing import CliRunner

from mcp_client.cli import main, run_interactive_command
from mcp_client.client.session import SessionState
from tests.fake_server import connected_session

SERVER_SCRIPT = Path(__file__).parent / "stdio_server.py"
SERVER = f"{shlex.quote(sys.executable)} {shlex.quote(str(SERVER_SCRIPT))}"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_list_tools(runner: CliRunner):
    result = runner.invoke(main, ["--server", SERVER, "list-tools"])

    assert result.exit_code == 0, result.output
    assert "Available tools:" in result.output
    assert "  - echo: Echo the text back" in result.output


def test_server_from_environment(runner: CliRunner):
    result = runner.invoke(main, ["list-tools"], env={"MCP_CLIENT_SERVER": SERVER})

    assert result.exit_code == 0, result.output
    assert "  - crash: Exit without answering" in result.output


def test_call_tool(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "call-tool", "echo", "--args", '{"text": "hello"}'])

    assert result.exit_code == 0, result.output
    assert "Tool result:" in result.output
    assert "  Text: hello" in result.output


def test_call_unknown_tool(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "call-tool", "missing"])

    assert result.exit_code == 1
    assert "Tool not found: Unknown tool: missing" in result.output


def test_unsupported_method_is_reported(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "list-resources"])

    assert result.exit_code == 1
    assert "Server error -32601" in result.output


def test_call_tool_with_invalid_json(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "call-tool", "echo", "--args", "{not json"])

    assert result.exit_code == 2
    assert "must be a JSON object" in result.output


def test_call_tool_with_non_object_arguments(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "call-tool", "echo", "--args", "[1, 2]"])

    assert result.exit_code == 2
    assert "got list" in result.output


def test_unreachable_server(runner: CliRunner):
    result = runner.invoke(main, ["-s", "/path/to/nonexistent/server", "list-tools"])

    assert result.exit_code == 1
    assert "Could not connect to server" in result.output


def test_interactive(runner: CliRunner):
    commands = "\n".join(["help", "tools", 'call echo {"text": "hi there"}', "call", "bogus", "", "exit"])

    result = runner.invoke(main, ["-s", SERVER, "interactive"], input=commands + "\n")

    assert result.exit_code == 0, result.output
    assert "Entering interactive mode" in result.output
    assert "  call <tool> [args] - Call a tool" in result.output
    assert "  - garbage: Write a malformed line before answering" in result.output
    assert "  Text: hi there" in result.output
    assert "Usage: call <tool> [args]" in result.output
    assert "Unknown command: bogus" in result.output
    assert "Exiting interactive mode" in result.output


def test_interactive_stops_at_end_of_input(runner: CliRunner):
    result = runner.invoke(main, ["-s", SERVER, "interactive"], input="tools\n")

    assert result.exit_code == 0, result.output
    assert "Exiting interactive mode" in result.output


@pytest.mark.anyio
async def test_interactive_commands_render_results(capsys: pytest.CaptureFixture[str]):
    async with connected_session() as (session, _):
        assert await run_interactive_command(session, "resources")
        assert await run_interactive_command(session, "read file:///greeting.txt")
        assert await run_interactive_command(session, "read file:///logo.png")
        assert await run_interactive_command(session, 'prompt greet {"name": "Ada"}')
        assert await run_interactive_command(session, "prompts")
        assert await run_interactive_command(session, "call add {\"a\": 1, \"b\": 2}")
        assert await run_interactive_command(session, "read file:///missing.txt")
        assert await run_interactive_command(session, "call add [1]")
        assert not await run_interactive_command(session, "quit")

    captured = capsys.readouterr()
    assert "  - file:///greeting.txt: A greeting" in captured.out
    assert "  Text content: Hello!" in captured.out
    assert "  MIME type: image/png" in captured.out
    assert "  Binary content: 12 bytes" in captured.out
    assert "  Description: A greeting" in captured.out
    assert "  user role: Text: Say hello to Ada" in captured.out
    assert "  - greet: Greet someone" in captured.out
    assert "  Text: 3" in captured.out
    assert '  Structured: {"result": 3}' in captured.out
    assert "Error: Resource not found: Resource not found: file:///missing.txt" in captured.err
    assert "Error: arguments must be a JSON object, got list" in captured.err


@pytest.mark.anyio
async def test_interactive_stops_when_connection_is_lost(capsys: pytest.CaptureFixture[str]):
    async with connected_session() as (session, server):
        await server.kill()
        with anyio.fail_after(5):
            while session.state is not SessionState.FAILED:
                await anyio.sleep(0.01)

        assert not await run_interactive_command(session, "tools")

    assert "Error: Not connected" in capsys.readouterr().err
