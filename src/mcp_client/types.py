"""Protocol types used by the MCP client.

The JSON-RPC envelope models are only strict enough to route a message: the
``id`` and ``method`` are checked, while ``params``, ``result`` and error
``data`` stay opaque JSON values. The MCP payload models below the envelope
accept (and keep) unknown fields so newer servers do not break older clients.
"""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, JsonValue, RootModel, Tag

LATEST_PROTOCOL_VERSION: Final[str] = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", "2025-03-26", LATEST_PROTOCOL_VERSION)

JSONRPC_VERSION: Final[str] = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# MCP error codes
CONNECTION_CLOSED: Final[int] = -32000
REQUEST_TIMEOUT: Final[int] = -32001
RESOURCE_NOT_FOUND: Final[int] = -32002

RequestId = Annotated[int, Field(strict=True)] | str
ProgressToken = str | int
Role = Literal["user", "assistant"]
LoggingLevel = Literal["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, JsonValue] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, JsonValue] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: JsonValue = None


class JSONRPCResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: JsonValue


class JSONRPCError(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


def _message_kind(value: Any) -> str | None:
    if isinstance(value, dict):
        if "method" in value:
            return "request" if "id" in value else "notification"
        if "error" in value:
            return "error"
        if "result" in value:
            return "response"
        return None
    return _MODEL_KINDS.get(type(value))


_MODEL_KINDS: dict[type, str] = {
    JSONRPCRequest: "request",
    JSONRPCNotification: "notification",
    JSONRPCResponse: "response",
    JSONRPCError: "error",
}


class JSONRPCMessage(
    RootModel[
        Annotated[
            Annotated[JSONRPCRequest, Tag("request")]
            | Annotated[JSONRPCNotification, Tag("notification")]
            | Annotated[JSONRPCResponse, Tag("response")]
            | Annotated[JSONRPCError, Tag("error")],
            Discriminator(_message_kind),
        ]
    ]
):
    """Any message that can travel over a transport."""


class MCPModel(BaseModel):
    """Base for MCP payload models; keeps fields this client does not know about."""

    model_config = ConfigDict(extra="allow")


class Implementation(MCPModel):
    """Name and version of an MCP implementation."""

    name: str
    version: str
    title: str | None = None


class RootsCapability(MCPModel):
    listChanged: bool | None = None


class ClientCapabilities(MCPModel):
    """Capabilities a client may support."""

    experimental: dict[str, dict[str, Any]] | None = None
    roots: RootsCapability | None = None
    sampling: dict[str, Any] | None = None
    elicitation: dict[str, Any] | None = None


class ListChangedCapability(MCPModel):
    listChanged: bool | None = None


class ResourcesCapability(ListChangedCapability):
    subscribe: bool | None = None


class ServerCapabilities(MCPModel):
    """Capabilities that a server may support."""

    experimental: dict[str, dict[str, Any]] | None = None
    logging: dict[str, Any] | None = None
    completions: dict[str, Any] | None = None
    prompts: ListChangedCapability | None = None
    resources: ResourcesCapability | None = None
    tools: ListChangedCapability | None = None


class InitializeRequestParams(MCPModel):
    protocolVersion: str
    capabilities: ClientCapabilities
    clientInfo: Implementation


class InitializeResult(MCPModel):
    """The server's answer to the initialize request."""

    protocolVersion: str
    capabilities: ServerCapabilities
    serverInfo: Implementation
    instructions: str | None = None


class Tool(MCPModel):
    """Definition for a tool the client can call."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    title: str | None = None
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    outputSchema: dict[str, Any] | None = None
    annotations: dict[str, Any] | None = None


class Resource(MCPModel):
    """A known resource that the server is capable of reading."""

    model_config = ConfigDict(extra="allow", frozen=True)

    uri: str
    name: str
    title: str | None = None
    description: str | None = None
    mimeType: str | None = None
    size: int | None = None


class PromptArgument(MCPModel):
    """An argument for a prompt template."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    description: str | None = None
    required: bool | None = None


class Prompt(MCPModel):
    """A prompt or prompt template that the server offers."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    title: str | None = None
    description: str | None = None
    arguments: tuple[PromptArgument, ...] | None = None


class PaginatedResult(MCPModel):
    nextCursor: str | None = None


class ListToolsResult(PaginatedResult):
    tools: list[Tool]


class ListResourcesResult(PaginatedResult):
    resources: list[Resource]


class ListPromptsResult(PaginatedResult):
    prompts: list[Prompt]


class TextResourceContents(MCPModel):
    uri: str
    mimeType: str | None = None
    text: str


class BlobResourceContents(MCPModel):
    uri: str
    mimeType: str | None = None
    blob: str
    """Base64-encoded binary data."""


ResourceContents = TextResourceContents | BlobResourceContents


class TextContent(MCPModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(MCPModel):
    type: Literal["image"] = "image"
    data: str
    mimeType: str


class AudioContent(MCPModel):
    type: Literal["audio"] = "audio"
    data: str
    mimeType: str


class EmbeddedResource(MCPModel):
    type: Literal["resource"] = "resource"
    resource: ResourceContents


class ResourceLink(MCPModel):
    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class UnknownContent(MCPModel):
    """Content of a type this client does not model; all fields are kept."""

    type: str


_CONTENT_TYPES = frozenset({"text", "image", "audio", "resource", "resource_link"})


def _content_kind(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if isinstance(kind, str) and kind in _CONTENT_TYPES else "unknown"


ContentBlock = Annotated[
    Annotated[TextContent, Tag("text")]
    | Annotated[ImageContent, Tag("image")]
    | Annotated[AudioContent, Tag("audio")]
    | Annotated[EmbeddedResource, Tag("resource")]
    | Annotated[ResourceLink, Tag("resource_link")]
    | Annotated[UnknownContent, Tag("unknown")],
    Discriminator(_content_kind),
]


class CallToolResult(MCPModel):
    """The server's response to a tool call."""

    content: list[ContentBlock] = Field(default_factory=list)
    structuredContent: dict[str, Any] | None = None
    isError: bool = False


class ReadResourceResult(MCPModel):
    """The server's response to a resources/read request."""

    contents: list[ResourceContents]


class PromptMessage(MCPModel):
    """Describes a message returned as part of a prompt."""

    role: Role
    content: ContentBlock


class GetPromptResult(MCPModel):
    """The server's response to a prompts/get request."""

    description: str | None = None
    messages: list[PromptMessage]


class EmptyResult(MCPModel):
    """A response that indicates success but carries no data."""


class ProgressNotificationParams(MCPModel):
    progressToken: ProgressToken
    progress: float
    total: float | None = None
    message: str | None = None


class LoggingMessageNotificationParams(MCPModel):
    level: LoggingLevel
    logger: str | None = None
    data: Any = None
