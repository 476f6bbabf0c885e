"""MCP payload types used by the gateway: handshake, tool listing and tool calls."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION: Final[str] = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", "2025-03-26", "2025-06-18")


class ProtocolModel(BaseModel):
    """Base class for MCP payloads. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Implementation(ProtocolModel):
    """Describes the name and version of an MCP implementation."""

    name: str
    version: str
    title: str | None = None


class ClientCapabilities(ProtocolModel):
    experimental: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    elicitation: dict[str, Any] | None = None


class ServerCapabilities(ProtocolModel):
    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeRequestParams(ProtocolModel):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    client_info: Annotated[Implementation, Field(alias="clientInfo")]


class InitializeResult(ProtocolModel):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None


class Tool(ProtocolModel):
    """Public view of a tool: what tools/list returns."""

    name: str
    input_schema: Annotated[dict[str, Any], Field(alias="inputSchema")]
    title: str | None = None
    description: str | None = None


class ListToolsResult(ProtocolModel):
    tools: list[Tool]


class CallToolRequestParams(ProtocolModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = None


class TextContent(ProtocolModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


class CallToolResult(ProtocolModel):
    """Server's response to a tools/call request."""

    content: list[TextContent]
    structured_content: Annotated[dict[str, Any] | None, Field(alias="structuredContent")] = None
    is_error: Annotated[bool, Field(alias="isError")] = False

    @classmethod
    def text(cls, text: str, **kwargs: Any) -> "CallToolResult":
        return cls(content=[TextContent(text=text)], **kwargs)
