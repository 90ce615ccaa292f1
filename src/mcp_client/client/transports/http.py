"""
HTTP Client Transport Module

Each outgoing message is POSTed to the server's MCP endpoint. The reply is
either a single JSON message or a ``text/event-stream`` carrying the response
(and any notifications sent before it). Once the session is initialized the
transport also listens on a GET event stream for messages the server sends on
its own, when the server offers one.
"""

import json
import logging
from typing import Any

import anyio
import httpx
from anyio.abc import TaskGroup, TaskStatus
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from httpx_sse import EventSource, ServerSentEvent, aconnect_sse
from pydantic import BaseModel, Field

from mcp_client.client.transports.base import Transport
from mcp_client.shared._httpx_utils import McpHttpClientFactory, create_mcp_http_client
from mcp_client.shared.codec import encode_message
from mcp_client.shared.exceptions import ConnectError, TransportClosed, TransportError
from mcp_client.types import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    REQUEST_TIMEOUT,
    ErrorData,
    JSONRPCError,
    RequestId,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID = "mcp-session-id"
MCP_PROTOCOL_VERSION = "mcp-protocol-version"
CONTENT_TYPE = "content-type"
ACCEPT = "accept"

JSON = "application/json"
SSE = "text/event-stream"


class HttpServerParameters(BaseModel):
    url: str
    """The server's MCP endpoint."""

    headers: dict[str, str] = Field(default_factory=dict)
    """Extra headers sent with every request."""

    timeout: float = 30.0
    """Timeout in seconds for connecting and for plain HTTP operations."""

    sse_read_timeout: float = 60 * 5
    """How long to wait for the next event on an event stream, in seconds."""


def _error_response(request_id: RequestId, code: int, message: str) -> bytes:
    return encode_message(JSONRPCError(id=request_id, error=ErrorData(code=code, message=message)))


def _answers(payload: bytes, request_id: RequestId) -> bool:
    """Check whether a payload is the response to the given request."""
    try:
        message = json.loads(payload)
    except ValueError:
        return False
    return isinstance(message, dict) and message.get("id") == request_id and ("result" in message or "error" in message)


class HttpTransport(Transport):
    """HTTP client transport implementation."""

    def __init__(
        self,
        server: HttpServerParameters,
        httpx_client_factory: McpHttpClientFactory = create_mcp_http_client,
    ) -> None:
        self.server = server
        self.session_id: str | None = None
        self.protocol_version: str | None = None
        self._httpx_client_factory = httpx_client_factory
        self._client: httpx.AsyncClient | None = None
        self._task_group: TaskGroup | None = None
        self._stop: anyio.Event | None = None
        self._incoming_writer: MemoryObjectSendStream[bytes | Exception] | None = None
        self._incoming: MemoryObjectReceiveStream[bytes | Exception] | None = None
        self._closed = False

    def _prepare_request_headers(self) -> dict[str, str]:
        """Build request headers, with the session ID and protocol version if known."""
        headers = {ACCEPT: f"{JSON}, {SSE}", CONTENT_TYPE: JSON}
        if self.session_id:
            headers[MCP_SESSION_ID] = self.session_id
        if self.protocol_version:
            headers[MCP_PROTOCOL_VERSION] = self.protocol_version
        return headers

    def _maybe_extract_session_id(self, response: httpx.Response) -> None:
        new_session_id = response.headers.get(MCP_SESSION_ID)
        if new_session_id:
            self.session_id = new_session_id
            logger.info("Received session ID: %s", self.session_id)

    def _maybe_extract_protocol_version(self, payload: bytes) -> None:
        try:
            result = json.loads(payload).get("result") or {}
        except (ValueError, AttributeError):
            return
        if isinstance(result, dict) and isinstance(result.get("protocolVersion"), str):
            self.protocol_version = result["protocolVersion"]
            logger.info("Negotiated protocol version: %s", self.protocol_version)

    async def open(self, task_group: TaskGroup) -> None:
        if self._client is not None or self._closed:
            raise ConnectError("HTTP transport can only be opened once")

        self._incoming_writer, self._incoming = anyio.create_memory_object_stream[bytes | Exception](0)
        self._stop = anyio.Event()
        self._client = self._httpx_client_factory(
            headers=self.server.headers,
            timeout=httpx.Timeout(self.server.timeout, read=self.server.sse_read_timeout),
        )
        self._task_group = await task_group.start(self._run_background)

    async def _run_background(self, *, task_status: TaskStatus[TaskGroup] = anyio.TASK_STATUS_IGNORED) -> None:
        """Own the in-flight POSTs and the GET stream until the transport closes."""
        assert self._stop is not None
        async with anyio.create_task_group() as tg:
            task_status.started(tg)
            await self._stop.wait()
            tg.cancel_scope.cancel()

    async def send(self, data: bytes) -> None:
        if self._closed or self._task_group is None:
            raise TransportClosed("HTTP transport is not open")
        try:
            message = json.loads(data)
        except ValueError as exc:
            raise TransportError(f"Refusing to send a payload that is not JSON: {exc}") from exc
        if not isinstance(message, dict):
            raise TransportError("Refusing to send a payload that is not a JSON object")

        self._task_group.start_soon(self._post, data, message)

    async def _emit(self, item: bytes | Exception) -> None:
        assert self._incoming_writer is not None
        try:
            await self._incoming_writer.send(item)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Dropping message received after the transport closed")

    async def _post(self, data: bytes, message: dict[str, Any]) -> None:
        assert self._client is not None
        method = message.get("method")
        request_id = message.get("id") if method is not None else None

        try:
            async with self._client.stream(
                "POST", self.server.url, content=data, headers=self._prepare_request_headers()
            ) as response:
                await self._handle_post_response(response, method, request_id)
        except httpx.TimeoutException as exc:
            logger.warning("HTTP request for %s timed out: %s", method or "response", exc)
            if request_id is not None:
                await self._emit(_error_response(request_id, REQUEST_TIMEOUT, f"HTTP request timed out: {exc}"))
        except httpx.HTTPError as exc:
            logger.warning("HTTP request to %s failed: %s", self.server.url, exc)
            await self._emit(TransportError(f"HTTP request to {self.server.url} failed: {exc}"))

    async def _handle_post_response(self, response: httpx.Response, method: str | None, request_id: Any) -> None:
        if response.status_code == 202:
            logger.debug("Received 202 Accepted")
            if method == "notifications/initialized" and self.session_id and self._task_group is not None:
                self._task_group.start_soon(self._listen_for_server_messages)
            return

        if response.status_code >= 400:
            logger.warning("Server answered HTTP %d to %s", response.status_code, method or "response")
            if request_id is not None:
                if response.status_code == 404 and self.session_id:
                    text = "Session terminated by server"
                else:
                    text = f"HTTP {response.status_code} {response.reason_phrase}"
                code = INVALID_REQUEST if response.status_code < 500 else INTERNAL_ERROR
                await self._emit(_error_response(request_id, code, text))
            return

        if method == "initialize":
            self._maybe_extract_session_id(response)

        # Notifications and responses get no reply body.
        if request_id is None:
            return

        content_type = response.headers.get(CONTENT_TYPE, "").lower()
        if content_type.startswith(JSON):
            payload = await response.aread()
            if method == "initialize":
                self._maybe_extract_protocol_version(payload)
            await self._emit(payload)
            if not _answers(payload, request_id):
                logger.warning("JSON reply to %s did not answer request %r", method, request_id)
                await self._emit(
                    _error_response(request_id, CONNECTION_CLOSED, "JSON reply did not carry the response")
                )
        elif content_type.startswith(SSE):
            is_complete = False
            async for sse in EventSource(response).aiter_sse():
                payload = self._payload_of(sse)
                if payload is None:
                    continue
                if method == "initialize":
                    self._maybe_extract_protocol_version(payload)
                await self._emit(payload)
                if _answers(payload, request_id):
                    is_complete = True
                    break
            if not is_complete:
                logger.warning("SSE stream for %s ended before the response to request %r", method, request_id)
                await self._emit(_error_response(request_id, CONNECTION_CLOSED, "SSE stream ended before the response"))
        else:
            await self._emit(_error_response(request_id, INTERNAL_ERROR, f"Unexpected content type: {content_type!r}"))

    @staticmethod
    def _payload_of(sse: ServerSentEvent) -> bytes | None:
        # httpx_sse reports a missing event field as "message"
        if sse.event != "message" or not sse.data.strip():
            return None
        return sse.data.encode("utf-8")

    async def _listen_for_server_messages(self) -> None:
        """Forward messages from the GET event stream; failures here are not fatal."""
        assert self._client is not None
        try:
            async with aconnect_sse(
                self._client,
                "GET",
                self.server.url,
                headers=self._prepare_request_headers(),
            ) as event_source:
                if event_source.response.status_code == 405:
                    logger.debug("Server does not offer a GET event stream")
                    return
                event_source.response.raise_for_status()
                logger.debug("GET SSE connection established")

                async for sse in event_source.aiter_sse():
                    payload = self._payload_of(sse)
                    if payload is not None:
                        await self._emit(payload)
        except httpx.HTTPError as exc:
            logger.debug("GET stream error (non-fatal): %s", exc)

    async def receive(self) -> bytes:
        if self._incoming is None:
            raise TransportClosed("HTTP transport is not open")
        try:
            item = await self._incoming.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError) as exc:
            raise TransportClosed("HTTP transport was closed") from exc
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is None:
            return

        if self.session_id:
            try:
                await self._client.delete(self.server.url, headers=self._prepare_request_headers())
            except httpx.HTTPError as exc:
                logger.debug("Failed to terminate HTTP session %s: %s", self.session_id, exc)

        assert self._stop is not None and self._incoming_writer is not None and self._incoming is not None
        self._stop.set()
        await self._client.aclose()
        await self._incoming_writer.aclose()
        await self._incoming.aclose()
