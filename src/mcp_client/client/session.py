from __future__ import annotations

import logging
import sys
from enum import Enum
from types import TracebackType
from typing import Any, Protocol, TypeVar

import anyio
from anyio.abc import TaskGroup
from pydantic import BaseModel, JsonValue, ValidationError
from typing_extensions import Self

import mcp_client.types as types
from mcp_client.client.registry import CapabilityKind, CapabilityRegistry
from mcp_client.client.transports import ServerParameters, Transport, create_transport
from mcp_client.shared._exception_utils import collapse_exception_group
from mcp_client.shared.codec import AnyMessage, decode_message, encode_message
from mcp_client.shared.correlation import CorrelationTable, PendingCall
from mcp_client.shared.exceptions import (
    ConnectError,
    ConnectionLost,
    DecodeError,
    McpClientError,
    NotConnected,
    RequestError,
    RequestTimeout,
    SessionClosed,
)

if sys.version_info < (3, 11):  # pragma: no cover
    from exceptiongroup import BaseExceptionGroup

DEFAULT_CLIENT_INFO = types.Implementation(name="mcp-client", version="0.1.0")

# Bound on the handshake, in seconds
DEFAULT_INIT_TIMEOUT = 10.0

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

_LIST_CHANGED: dict[str, CapabilityKind] = {
    "notifications/tools/list_changed": "tools",
    "notifications/resources/list_changed": "resources",
    "notifications/prompts/list_changed": "prompts",
}


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class NotificationHandlerFnT(Protocol):
    async def __call__(self, message: types.JSONRPCNotification | DecodeError) -> None: ...


class ProgressFnT(Protocol):
    """Protocol for progress notification callbacks."""

    async def __call__(self, progress: float, total: float | None, message: str | None) -> None: ...


class ClientSession:
    """
    A client session with one MCP server.

    The session owns exactly one transport. A single dispatch task reads every
    inbound message and routes it: responses complete their pending request,
    notifications go to the notification handler. Any number of tasks may
    issue requests concurrently.

    The session must be entered as an async context manager before
    ``connect`` is called; leaving the context closes it.

    Example:
        async with ClientSession() as session:
            await session.connect(StdioServerParameters(command="python", args=["server.py"]))
            tools = await session.list_tools()
            result = await session.call_tool("add", {"a": 5, "b": 3})
    """

    def __init__(
        self,
        client_info: types.Implementation | None = None,
        *,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
        request_timeout: float | None = None,
        notification_handler: NotificationHandlerFnT | None = None,
        registry: CapabilityRegistry | None = None,
    ) -> None:
        self._client_info = client_info or DEFAULT_CLIENT_INFO
        self._init_timeout = init_timeout
        self._request_timeout = request_timeout
        self._notification_handler = notification_handler
        self._registry = registry or CapabilityRegistry()
        self._state = SessionState.DISCONNECTED
        self._transport: Transport | None = None
        self._table = CorrelationTable()
        self._send_lock = anyio.Lock()
        self._request_id = 0
        self._progress_callbacks: dict[types.RequestId, ProgressFnT] = {}
        self._task_group: TaskGroup | None = None
        self._dispatch_scope: anyio.CancelScope | None = None
        self._initialize_result: types.InitializeResult | None = None

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        assert self._task_group is not None
        try:
            await self.close()
        finally:
            # Leaving the session must not wait on anything still running in it.
            self._task_group.cancel_scope.cancel()
            try:
                return await self._task_group.__aexit__(exc_type, exc_val, exc_tb)
            except BaseExceptionGroup as eg:
                collapsed = collapse_exception_group(eg, anyio.get_cancelled_exc_class())
                if collapsed is not eg:
                    raise collapsed from eg
                raise

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def server_info(self) -> types.Implementation | None:
        return self._initialize_result.serverInfo if self._initialize_result else None

    @property
    def server_capabilities(self) -> types.ServerCapabilities | None:
        """The capabilities the server announced, or None before the handshake."""
        return self._initialize_result.capabilities if self._initialize_result else None

    @property
    def protocol_version(self) -> str | None:
        return self._initialize_result.protocolVersion if self._initialize_result else None

    @property
    def instructions(self) -> str | None:
        return self._initialize_result.instructions if self._initialize_result else None

    def set_notification_handler(self, handler: NotificationHandlerFnT | None) -> None:
        """Install the single sink for server notifications (None removes it)."""
        self._notification_handler = handler

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug("Session state %s -> %s", self._state.value, state.value)
            self._state = state

    async def connect(self, server: Transport | ServerParameters | str) -> types.InitializeResult:
        """Open the transport and negotiate the session.

        Raises:
            ConnectError: If the transport cannot be opened, or the handshake
                fails, times out or offers an unsupported protocol version.
                The session is FAILED afterwards.
        """
        if self._task_group is None:
            raise RuntimeError("ClientSession must be entered with 'async with' before connect()")
        if self._state is not SessionState.DISCONNECTED:
            raise RuntimeError(f"Cannot connect a session that is {self._state.value}")

        transport = server if isinstance(server, Transport) else create_transport(server)
        self._transport = transport
        self._set_state(SessionState.CONNECTING)

        try:
            await transport.open(self._task_group)
        except BaseException as exc:
            await self._abort(f"Failed to open transport: {exc}")
            if isinstance(exc, ConnectError) or not isinstance(exc, Exception):
                raise
            raise ConnectError(f"Failed to open transport: {exc}") from exc

        self._dispatch_scope = anyio.CancelScope()
        self._task_group.start_soon(self._dispatch_loop, transport, self._dispatch_scope)
        self._set_state(SessionState.NEGOTIATING)

        try:
            result = await self._initialize()
        except BaseException as exc:
            await self._abort(f"Handshake failed: {exc}")
            if isinstance(exc, ConnectError) or not isinstance(exc, Exception):
                raise
            raise ConnectError(f"Handshake with server failed: {exc}") from exc

        logger.info(
            "Connected to server %s v%s (protocol %s)",
            result.serverInfo.name,
            result.serverInfo.version,
            result.protocolVersion,
        )
        return result

    async def _initialize(self) -> types.InitializeResult:
        params = types.InitializeRequestParams(
            protocolVersion=types.LATEST_PROTOCOL_VERSION,
            capabilities=types.ClientCapabilities(),
            clientInfo=self._client_info,
        )
        call = await self._start_request(
            "initialize",
            params.model_dump(mode="json", exclude_none=True),
            timeout=self._init_timeout,
            allowed_states=(SessionState.NEGOTIATING,),
        )
        try:
            raw_result = await call.wait()
        except RequestTimeout as exc:
            raise ConnectError(f"Server did not answer the handshake within {self._init_timeout} seconds") from exc

        try:
            result = types.InitializeResult.model_validate(raw_result)
        except ValidationError as exc:
            raise ConnectError(f"Malformed handshake response from server: {exc}") from exc

        if result.protocolVersion not in types.SUPPORTED_PROTOCOL_VERSIONS:
            raise ConnectError(f"Unsupported protocol version from the server: {result.protocolVersion}")

        self._initialize_result = result
        await self._send(types.JSONRPCNotification(method="notifications/initialized"))
        self._set_state(SessionState.READY)
        return result

    async def _abort(self, reason: str) -> None:
        """Fail the session and release the transport."""
        self._set_state(SessionState.FAILED)
        self._table.drain_all(reason, ConnectionLost)
        if self._dispatch_scope is not None:
            self._dispatch_scope.cancel()
        await self._release_transport()

    async def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            with anyio.CancelScope(shield=True):
                await transport.close()

    async def close(self) -> None:
        """Close the session.

        Requests still in flight are not waited for; they fail with
        SessionClosed. Calling close again is a no-op. A FAILED session stays
        FAILED, but its transport is released.
        """
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        failed = self._state is SessionState.FAILED
        if not failed:
            self._set_state(SessionState.CLOSING)
        self._table.drain_all("Session closed", SessionClosed)
        if self._dispatch_scope is not None:
            self._dispatch_scope.cancel()
        await self._release_transport()
        if not failed:
            self._set_state(SessionState.CLOSED)

    async def _send(self, message: AnyMessage) -> None:
        data = encode_message(message)
        transport = self._transport
        if transport is None:
            raise ConnectionLost("Transport is closed")
        async with self._send_lock:
            await transport.send(data)

    def _next_request_id(self) -> int:
        request_id = self._request_id
        self._request_id = request_id + 1
        return request_id

    async def _start_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
        allowed_states: tuple[SessionState, ...] = (SessionState.READY,),
    ) -> PendingCall:
        if self._state not in allowed_states:
            raise NotConnected(f"Cannot send {method!r}: session is {self._state.value}", method=method)

        request_id = self._next_request_id()
        if progress_callback is not None:
            # Use request_id as progress token
            params = dict(params or {})
            params["_meta"] = {**params.get("_meta", {}), "progressToken": request_id}
            self._progress_callbacks[request_id] = progress_callback

        call = self._table.register(request_id, method, timeout if timeout is not None else self._request_timeout)
        # A peer that stops reading must not hold the caller past its deadline.
        send_delay = None if call.deadline is None else max(call.deadline - anyio.current_time(), 0)
        try:
            with anyio.move_on_after(send_delay) as send_scope:
                await self._send(types.JSONRPCRequest(id=request_id, method=method, params=params))
        except OSError as exc:
            self._table.cancel(request_id)
            self._progress_callbacks.pop(request_id, None)
            raise ConnectionLost(f"Failed to send {method!r}: {exc}", method=method, request_id=request_id) from exc
        except BaseException:
            self._table.cancel(request_id)
            self._progress_callbacks.pop(request_id, None)
            raise

        if send_scope.cancelled_caught:
            error = RequestTimeout(
                f"Timed out sending {method!r} (request {request_id!r})", method=method, request_id=request_id
            )
            self._table.cancel(request_id, error)
            self._progress_callbacks.pop(request_id, None)
            raise error

        logger.debug("Sent request %r: %s", request_id, method)
        return call

    async def begin_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> PendingCall:
        """Send a request without waiting for its response.

        The returned PendingCall's ``request_id`` can be handed to
        ``cancel_request``; its ``wait()`` yields the raw result.
        """
        return await self._start_request(method, params, timeout=timeout)

    def cancel_request(self, request_id: types.RequestId) -> bool:
        """Cancel an outstanding request; its waiter gets RequestCancelled.

        The server is not told; a late response is discarded. Returns False if
        the request was no longer pending.
        """
        self._progress_callbacks.pop(request_id, None)
        return self._table.cancel(request_id)

    async def send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> JsonValue:
        """
        Send a request and wait for its result.

        The per-call timeout takes precedence over the session's request
        timeout.

        Raises:
            NotConnected: If the session is not ready; nothing is sent
            RequestError: If the server answered with an error
            RequestTimeout: If no response arrived in time
            ConnectionLost: If the connection went away first
        """
        call = await self._start_request(method, params, timeout=timeout, progress_callback=progress_callback)
        try:
            return await call.wait()
        finally:
            self._progress_callbacks.pop(call.request_id, None)

    async def _request(
        self,
        method: str,
        params: dict[str, Any] | None,
        result_type: type[ResultT],
        *,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> ResultT:
        raw_result = await self.send_request(method, params, timeout=timeout, progress_callback=progress_callback)
        try:
            return result_type.model_validate(raw_result)
        except ValidationError as exc:
            raise RequestError(
                types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message=f"Invalid {method} result from server: {exc.error_count()} validation error(s)",
                    data=raw_result,
                ),
                method=method,
            ) from exc

    async def send_ping(self) -> types.EmptyResult:
        """Send a ping request."""
        return await self._request("ping", None, types.EmptyResult)

    async def list_tools(self) -> list[types.Tool]:
        """Fetch every tool the server offers, following pagination."""
        tools: list[types.Tool] = []
        cursor: str | None = None
        while True:
            result = await self._request("tools/list", _cursor_params(cursor), types.ListToolsResult)
            tools.extend(result.tools)
            cursor = result.nextCursor
            if not cursor:
                break
        self._registry.replace_tools(tools)
        return tools

    async def list_resources(self) -> list[types.Resource]:
        """Fetch every resource the server offers, following pagination."""
        resources: list[types.Resource] = []
        cursor: str | None = None
        while True:
            result = await self._request("resources/list", _cursor_params(cursor), types.ListResourcesResult)
            resources.extend(result.resources)
            cursor = result.nextCursor
            if not cursor:
                break
        self._registry.replace_resources(resources)
        return resources

    async def list_prompts(self) -> list[types.Prompt]:
        """Fetch every prompt the server offers, following pagination."""
        prompts: list[types.Prompt] = []
        cursor: str | None = None
        while True:
            result = await self._request("prompts/list", _cursor_params(cursor), types.ListPromptsResult)
            prompts.extend(result.prompts)
            cursor = result.nextCursor
            if not cursor:
                break
        self._registry.replace_prompts(prompts)
        return prompts

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> types.CallToolResult:
        """Send a tools/call request.

        The tool name is always sent to the server, even when the cached tool
        list does not contain it; the server's answer is authoritative.

        Raises:
            ToolNotFound: If the server does not know the tool
            InvalidArguments: If the server rejected the arguments
            RequestError: For any other error response
        """
        if self._registry.fetched("tools") and not self._registry.has_tool(name):
            logger.debug("Tool %r is not in the cached tool list, calling it anyway", name)

        params: dict[str, Any] = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        return await self._request(
            "tools/call", params, types.CallToolResult, timeout=timeout, progress_callback=progress_callback
        )

    async def read_resource(self, uri: str, *, timeout: float | None = None) -> types.ReadResourceResult:
        """Send a resources/read request."""
        return await self._request("resources/read", {"uri": str(uri)}, types.ReadResourceResult, timeout=timeout)

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None, *, timeout: float | None = None
    ) -> types.GetPromptResult:
        """Send a prompts/get request."""
        params: dict[str, Any] = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        return await self._request("prompts/get", params, types.GetPromptResult, timeout=timeout)

    async def _dispatch_loop(self, transport: Transport, scope: anyio.CancelScope) -> None:
        with scope:
            while True:
                try:
                    data = await transport.receive()
                except Exception as exc:
                    self._connection_lost(exc)
                    return

                try:
                    message = decode_message(data)
                except DecodeError as exc:
                    logger.warning("Discarding malformed message from server: %s", exc)
                    await self._deliver_notification(exc)
                    continue

                try:
                    await self._handle_message(message.root)
                except Exception as exc:
                    # Routing must never end the loop; callers would hang.
                    logger.exception("Unhandled exception in dispatch loop")
                    self._connection_lost(exc)
                    return

    def _connection_lost(self, exc: BaseException) -> None:
        if self._state in (SessionState.CLOSING, SessionState.CLOSED, SessionState.FAILED):
            logger.debug("Dispatch loop stopped: %s", exc)
            return
        logger.warning("Connection to server lost: %s", exc)
        self._set_state(SessionState.FAILED)
        self._table.drain_all(f"Connection lost: {exc}", ConnectionLost)

    async def _handle_message(
        self,
        message: types.JSONRPCRequest | types.JSONRPCNotification | types.JSONRPCResponse | types.JSONRPCError,
    ) -> None:
        if isinstance(message, types.JSONRPCResponse | types.JSONRPCError):
            if message.id is None:
                logger.warning("Server reported an error for an unidentifiable request: %s", message.error.message)
                return
            if not self._table.resolve(message.id, message):
                logger.debug("Discarding response for unknown or finished request %r", message.id)
        elif isinstance(message, types.JSONRPCNotification):
            await self._handle_notification(message)
        else:
            assert self._task_group is not None
            self._task_group.start_soon(self._answer_server_request, message)

    async def _handle_notification(self, notification: types.JSONRPCNotification) -> None:
        if notification.method == "notifications/progress":
            await self._handle_progress(notification)
        elif notification.method in _LIST_CHANGED:
            self._registry.invalidate(_LIST_CHANGED[notification.method])
        elif notification.method == "notifications/message":
            _log_server_message(notification)
        await self._deliver_notification(notification)

    async def _handle_progress(self, notification: types.JSONRPCNotification) -> None:
        try:
            params = types.ProgressNotificationParams.model_validate(notification.params or {})
        except ValidationError as exc:
            logger.warning("Ignoring malformed progress notification: %s", exc)
            return
        callback = self._progress_callbacks.get(params.progressToken)
        if callback is None:
            return
        try:
            await callback(params.progress, params.total, params.message)
        except Exception:
            logger.exception("Progress callback failed")

    async def _deliver_notification(self, message: types.JSONRPCNotification | DecodeError) -> None:
        handler = self._notification_handler
        if handler is None:
            return
        try:
            await handler(message)
        except Exception:
            logger.exception("Notification handler failed")

    async def _answer_server_request(self, request: types.JSONRPCRequest) -> None:
        """Answer a request the server sent us: ping is supported, nothing else."""
        response: types.JSONRPCResponse | types.JSONRPCError
        if request.method == "ping":
            response = types.JSONRPCResponse(id=request.id, result={})
        else:
            response = types.JSONRPCError(
                id=request.id,
                error=types.ErrorData(code=types.METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        try:
            await self._send(response)
        except (OSError, McpClientError) as exc:
            logger.debug("Could not answer server request %r: %s", request.id, exc)


def _cursor_params(cursor: str | None) -> dict[str, Any] | None:
    return {"cursor": cursor} if cursor else None


def _log_server_message(notification: types.JSONRPCNotification) -> None:
    try:
        params = types.LoggingMessageNotificationParams.model_validate(notification.params or {})
    except ValidationError:
        return
    logger.debug("Server log [%s] %s: %s", params.level, params.logger or "server", params.data)
