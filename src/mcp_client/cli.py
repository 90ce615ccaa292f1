"""Command line front end: inspect and drive an MCP server from a shell."""

import json
import shlex
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import anyio
import anyio.to_thread
import click

from mcp_client.client import ClientSession, SessionState, open_session
from mcp_client.config import ClientSettings
from mcp_client.shared.exceptions import (
    ConnectError,
    InvalidArguments,
    McpClientError,
    NotConnected,
    PromptNotFound,
    RequestError,
    RequestTimeout,
    ResourceNotFound,
    ToolNotFound,
)
from mcp_client.types import (
    AudioContent,
    BlobResourceContents,
    CallToolResult,
    ContentBlock,
    EmbeddedResource,
    GetPromptResult,
    ImageContent,
    ReadResourceResult,
    ResourceLink,
    TextContent,
    TextResourceContents,
)
from mcp_client.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)

SessionAction = Callable[[ClientSession], Awaitable[None]]

HELP_TEXT = """\
Available commands:
  tools - List available tools
  resources - List available resources
  prompts - List available prompts
  call <tool> [args] - Call a tool
  read <uri> - Read a resource
  prompt <name> [args] - Get a prompt
  help - Show this help
  exit - Exit interactive mode"""


def describe_error(exc: McpClientError) -> str:
    """One line describing a client error for the user."""
    if isinstance(exc, ConnectError):
        return f"Could not connect to server: {exc}"
    if isinstance(exc, ToolNotFound):
        return f"Tool not found: {exc}"
    if isinstance(exc, InvalidArguments):
        return f"Invalid tool arguments: {exc}"
    if isinstance(exc, ResourceNotFound):
        return f"Resource not found: {exc}"
    if isinstance(exc, PromptNotFound):
        return f"Prompt not found: {exc}"
    if isinstance(exc, RequestError):
        return f"Server error {exc.code}: {exc}"
    if isinstance(exc, RequestTimeout):
        return f"Timed out: {exc}"
    if isinstance(exc, NotConnected):
        return f"Not connected: {exc}"
    return f"Connection error: {exc}"


def parse_json_object(value: str, what: str = "arguments") -> dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{what} must be a JSON object: {exc}") from exc
    if not isinstance(parsed, dict):
        raise click.BadParameter(f"{what} must be a JSON object, got {type(parsed).__name__}")
    return parsed


def format_content(block: ContentBlock) -> str:
    if isinstance(block, TextContent):
        return f"Text: {block.text}"
    if isinstance(block, ImageContent):
        return f"Image: {len(block.data)} bytes, type: {block.mimeType}"
    if isinstance(block, AudioContent):
        return f"Audio: {len(block.data)} bytes, type: {block.mimeType}"
    if isinstance(block, EmbeddedResource):
        return f"Resource content: {block.resource.uri}"
    if isinstance(block, ResourceLink):
        return f"Resource link: {block.uri}"
    return f"Content of type {block.type!r}"


async def show_tools(session: ClientSession) -> None:
    tools = await session.list_tools()
    if not tools:
        click.echo("No tools available")
        return
    click.echo("Available tools:")
    for tool in tools:
        click.echo(f"  - {tool.name}: {tool.description or ''}")


async def show_resources(session: ClientSession) -> None:
    resources = await session.list_resources()
    if not resources:
        click.echo("No resources available")
        return
    click.echo("Available resources:")
    for resource in resources:
        click.echo(f"  - {resource.uri}: {resource.description or ''}")


async def show_prompts(session: ClientSession) -> None:
    prompts = await session.list_prompts()
    if not prompts:
        click.echo("No prompts available")
        return
    click.echo("Available prompts:")
    for prompt in prompts:
        click.echo(f"  - {prompt.name}: {prompt.description or ''}")


def print_tool_result(result: CallToolResult) -> None:
    click.echo("Tool error:" if result.isError else "Tool result:")
    for block in result.content:
        click.echo(f"  {format_content(block)}")
    if result.structuredContent is not None:
        click.echo(f"  Structured: {json.dumps(result.structuredContent)}")


def print_resource(result: ReadResourceResult) -> None:
    click.echo("Resource content:")
    for content in result.contents:
        click.echo(f"  URI: {content.uri}")
        if content.mimeType:
            click.echo(f"  MIME type: {content.mimeType}")
        if isinstance(content, TextResourceContents):
            click.echo(f"  Text content: {content.text}")
        elif isinstance(content, BlobResourceContents):
            click.echo(f"  Binary content: {len(content.blob)} bytes")


def print_prompt(result: GetPromptResult) -> None:
    click.echo("Prompt result:")
    if result.description:
        click.echo(f"  Description: {result.description}")
    for message in result.messages:
        click.echo(f"  {message.role} role: {format_content(message.content)}")


async def call_tool(session: ClientSession, name: str, arguments: dict[str, Any]) -> None:
    print_tool_result(await session.call_tool(name, arguments))


async def read_resource(session: ClientSession, uri: str) -> None:
    print_resource(await session.read_resource(uri))


async def get_prompt(session: ClientSession, name: str, arguments: dict[str, Any]) -> None:
    print_prompt(await session.get_prompt(name, {key: str(value) for key, value in arguments.items()}))


async def run_interactive_command(session: ClientSession, line: str) -> bool:
    """Run one interactive command line. Returns False when the loop should stop."""
    line = line.strip()
    if not line:
        return True
    if line in ("exit", "quit"):
        return False
    if line == "help":
        click.echo(HELP_TEXT)
        return True

    command, *rest = line.split(" ", 2)
    try:
        if command == "tools":
            await show_tools(session)
        elif command == "resources":
            await show_resources(session)
        elif command == "prompts":
            await show_prompts(session)
        elif command == "call":
            if not rest:
                click.echo("Usage: call <tool> [args]")
            else:
                arguments = parse_json_object(rest[1]) if len(rest) > 1 else {}
                await call_tool(session, rest[0], arguments)
        elif command == "read":
            if not rest:
                click.echo("Usage: read <uri>")
            else:
                await read_resource(session, rest[0])
        elif command == "prompt":
            if not rest:
                click.echo("Usage: prompt <name> [args]")
            else:
                arguments = parse_json_object(rest[1]) if len(rest) > 1 else {}
                await get_prompt(session, rest[0], arguments)
        else:
            click.echo(f"Unknown command: {command}. Type 'help' for available commands.")
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.message}", err=True)
    except McpClientError as exc:
        click.echo(f"Error: {describe_error(exc)}", err=True)
        if isinstance(exc, NotConnected) or session.state in (SessionState.FAILED, SessionState.CLOSED):
            return False
    return True


async def interactive_loop(session: ClientSession) -> None:
    click.echo("Entering interactive mode. Type 'help' for commands, 'exit' to quit.")
    while True:
        try:
            line = await anyio.to_thread.run_sync(partial(input, "> "))
        except EOFError:
            break
        if not await run_interactive_command(session, line):
            break
    click.echo("Exiting interactive mode")


async def run_with_session(settings: ClientSettings, action: SessionAction) -> None:
    async with open_session(
        settings.server,
        client_info=settings.client_info,
        init_timeout=settings.init_timeout,
        request_timeout=settings.request_timeout,
    ) as session:
        await action(session)


def execute(ctx: click.Context, action: SessionAction) -> None:
    settings: ClientSettings = ctx.obj
    try:
        anyio.run(run_with_session, settings, action)
    except McpClientError as exc:
        raise click.ClickException(describe_error(exc)) from exc
    except ValueError as exc:
        # Raised for an unusable --server value
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("-s", "--server", default=None, help="Server to connect to: a command line or an http(s)/ws(s) URL.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--timeout", type=float, default=None, help="Per-request timeout in seconds.")
@click.version_option(package_name="mcp-client-session")
@click.pass_context
def main(ctx: click.Context, server: str | None, verbose: bool, timeout: float | None) -> None:
    """Talk to a Model Context Protocol server."""
    settings = ClientSettings()
    overrides: dict[str, Any] = {}
    if server is not None:
        overrides["server"] = server
    if timeout is not None:
        overrides["request_timeout"] = timeout
    if verbose:
        overrides["log_level"] = "DEBUG"
    settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)
    logger.debug("Using server %s", shlex.quote(settings.server))
    ctx.obj = settings


@main.command("list-tools")
@click.pass_context
def list_tools_command(ctx: click.Context) -> None:
    """List the tools the server offers."""
    execute(ctx, show_tools)


@main.command("list-resources")
@click.pass_context
def list_resources_command(ctx: click.Context) -> None:
    """List the resources the server offers."""
    execute(ctx, show_resources)


@main.command("list-prompts")
@click.pass_context
def list_prompts_command(ctx: click.Context) -> None:
    """List the prompts the server offers."""
    execute(ctx, show_prompts)


@main.command("call-tool")
@click.argument("tool")
@click.option("-a", "--args", "arguments", default="{}", help="Tool arguments as a JSON object.")
@click.pass_context
def call_tool_command(ctx: click.Context, tool: str, arguments: str) -> None:
    """Call TOOL with the given arguments."""
    parsed = parse_json_object(arguments)
    execute(ctx, lambda session: call_tool(session, tool, parsed))


@main.command("read-resource")
@click.argument("uri")
@click.pass_context
def read_resource_command(ctx: click.Context, uri: str) -> None:
    """Read the resource at URI."""
    execute(ctx, lambda session: read_resource(session, uri))


@main.command("get-prompt")
@click.argument("name")
@click.option("-a", "--args", "arguments", default="{}", help="Prompt arguments as a JSON object.")
@click.pass_context
def get_prompt_command(ctx: click.Context, name: str, arguments: str) -> None:
    """Get the prompt NAME rendered with the given arguments."""
    parsed = parse_json_object(arguments)
    execute(ctx, lambda session: get_prompt(session, name, parsed))


@main.command("interactive")
@click.pass_context
def interactive_command(ctx: click.Context) -> None:
    """Enter an interactive command loop."""
    execute(ctx, interactive_loop)


if __name__ == "__main__":
    main()
