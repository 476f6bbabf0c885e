from erp_mcp.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    UNAUTHORIZED,
    UNKNOWN_TOOL,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
    dump_message,
    is_initialize_request,
)
from erp_mcp.types.protocol import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolRequestParams,
    CallToolResult,
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    TextContent,
    Tool,
)

__all__ = [
    "CallToolRequestParams",
    "CallToolResult",
    "ClientCapabilities",
    "ErrorData",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "Implementation",
    "InitializeRequestParams",
    "InitializeResult",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCMessageAdapter",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCResultResponse",
    "LATEST_PROTOCOL_VERSION",
    "ListToolsResult",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "RequestId",
    "SESSION_NOT_FOUND",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "ServerCapabilities",
    "TextContent",
    "Tool",
    "UNAUTHORIZED",
    "UNKNOWN_TOOL",
    "dump_message",
    "is_initialize_request",
]
