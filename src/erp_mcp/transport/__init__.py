from erp_mcp.transport.sse import SseTransport
from erp_mcp.transport.stdio import run_stdio
from erp_mcp.transport.streamable_http import StreamableHTTPASGIApp, StreamableHTTPSessionManager

__all__ = ["SseTransport", "StreamableHTTPASGIApp", "StreamableHTTPSessionManager", "run_stdio"]
