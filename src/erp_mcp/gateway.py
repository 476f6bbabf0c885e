"""
Protocol gateway: turns decoded frames into responses.

The gateway knows nothing about bytes or HTTP. Transports hand it typed
JSON-RPC frames together with the session they arrived on and write back
whatever it returns. Session and event state are injected, so several
gateways can live side by side.
"""

from __future__ import annotations

import logging
from typing import Any

import anyio
from pydantic import ValidationError

from erp_mcp import __version__
from erp_mcp.context import RequestContext
from erp_mcp.errors import (
    GatewayError,
    InternalError,
    InvalidRequest,
    MethodNotFound,
    SessionNotFound,
    ToolError,
    UnknownTool,
    UpstreamError,
    UpstreamTimeout,
)
from erp_mcp.event_log import EventId, EventLog
from erp_mcp.session import Session, SessionRegistry, TransportKind
from erp_mcp.tools import ToolDispatchTable
from erp_mcp.types import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolRequestParams,
    CallToolResult,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    ListToolsResult,
    ServerCapabilities,
    Tool,
    dump_message,
)

logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "express-erp-mcp"
DEFAULT_CALL_TIMEOUT = 30.0


def upstream_error_result(error: UpstreamError) -> CallToolResult:
    text = f"{error.kind}: {error.message}"
    if error.status_code is not None:
        text = f"{error.kind} (status {error.status_code}): {error.message}"
    if error.hint:
        text += f"\n\n{error.hint}"
    return CallToolResult.text(
        text,
        is_error=True,
        structured_content={
            "error": {"type": error.kind, "message": error.message, "status_code": error.status_code}
        },
    )


def tool_error_result(error: ToolError) -> CallToolResult:
    return CallToolResult.text(
        f"ToolError: {error}",
        is_error=True,
        structured_content={"error": {"type": "ToolError", "message": str(error)}},
    )


def internal_error_result() -> CallToolResult:
    return CallToolResult.text(
        "InternalError: the tool failed unexpectedly.",
        is_error=True,
        structured_content={"error": {"type": "InternalError", "message": "Internal error"}},
    )


class Gateway:
    """Routes frames to the tool dispatch table and enforces session rules.

    Usage:
        gateway = Gateway(build_tool_table(orders, database))
        session, response = gateway.handle_initialize(request, TransportKind.HTTP_STATEFUL)
        response = await gateway.handle_message(message, session=session)
        gateway.handle_termination(session.session_id)
    """

    def __init__(
        self,
        tools: ToolDispatchTable,
        *,
        registry: SessionRegistry | None = None,
        event_log: EventLog | None = None,
        name: str = DEFAULT_SERVER_NAME,
        version: str = __version__,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        instructions: str | None = None,
    ) -> None:
        self.tools = tools
        self.registry = registry if registry is not None else SessionRegistry()
        self.event_log = event_log if event_log is not None else EventLog()
        self.name = name
        self.version = version
        self.call_timeout = call_timeout
        self.instructions = instructions

    # --- Session lifecycle ---

    def open_session(self, transport_kind: TransportKind) -> Session:
        """Create an implicit session bound to one physical connection."""
        session = self.registry.create(transport_kind, implicit=True)
        session.activate()
        return session

    def handle_initialize(
        self, request: JSONRPCRequest, transport_kind: TransportKind
    ) -> tuple[Session, JSONRPCResponse]:
        """Create a negotiated session from an initialize request.

        Raises InvalidRequest when the frame is not a well-formed initialize.
        """
        if request.method != "initialize":
            raise InvalidRequest(f"Expected initialize, got {request.method}")
        params = self._parse_initialize(request)

        session = self.registry.create(transport_kind)
        result = self._complete_handshake(session, params)
        session.activate()
        logger.info(f"Session {session.session_id} initialized by {params.client_info.name}")
        return session, JSONRPCResultResponse(id=request.id, result=result)

    def resolve(self, session_id: str | None) -> Session:
        """Look up a session that may still receive frames."""
        session = self.registry.get(session_id) if session_id else None
        if session is None or not session.is_active:
            raise SessionNotFound(session_id)
        return session

    def handle_termination(self, session_id: str | None) -> None:
        """Close a session and release everything held for it.

        Terminating an unknown or already closed session raises SessionNotFound.
        """
        session = self.registry.get(session_id) if session_id else None
        if session is None:
            raise SessionNotFound(session_id)

        self.registry.remove(session.session_id)
        self.event_log.clear(session.session_id)
        session.close()
        logger.info(f"Session {session.session_id} terminated")

    def record_event(self, session: Session, message: JSONRPCMessage) -> EventId | None:
        """Append a frame to the session's event log.

        Returns None once the session is closed; its log was already cleared
        and must not be recreated.
        """
        if not session.is_active or session.session_id not in self.registry:
            logger.debug(f"Not recording event for closed session {session.session_id}")
            return None
        return self.event_log.append(session.session_id, dump_message(message))

    # --- Frame routing ---

    async def handle_message(
        self,
        message: JSONRPCMessage,
        *,
        session: Session,
        context: RequestContext | None = None,
    ) -> JSONRPCResponse | None:
        """Process one frame on a bound session.

        Requests always produce a response, errors included. Notifications and
        client responses produce nothing.
        """
        if isinstance(message, JSONRPCRequest):
            ctx = (context or RequestContext(session=session)).for_request(message.id)
            try:
                result = await self._dispatch(message, session, ctx)
            except GatewayError as e:
                logger.info(f"Request {message.method} rejected: {e.message}")
                return JSONRPCErrorResponse(id=message.id, error=e.to_error_data())
            except Exception:
                logger.exception(f"Unhandled error while processing {message.method}")
                return JSONRPCErrorResponse(id=message.id, error=InternalError().to_error_data())
            return JSONRPCResultResponse(id=message.id, result=result)

        if isinstance(message, JSONRPCNotification):
            if not session.is_active:
                logger.debug(f"Dropping notification {message.method} for closed session {session.session_id}")
            elif message.method != "notifications/initialized":
                logger.debug(f"Ignoring notification {message.method}")
            return None

        # Responses to server->client requests; this server never issues any.
        logger.debug(f"Ignoring client response {message.id}")
        return None

    async def _dispatch(self, request: JSONRPCRequest, session: Session, ctx: RequestContext) -> dict[str, Any]:
        if not session.is_active:
            raise SessionNotFound(session.session_id)

        match request.method:
            case "initialize":
                if not session.implicit or session.handshake_complete:
                    raise InvalidRequest("Session is already initialized")
                return self._complete_handshake(session, self._parse_initialize(request))
            case "ping":
                return {}
            case "tools/list":
                return ListToolsResult(tools=self.handle_tool_list()).model_dump(by_alias=True, exclude_none=True)
            case "tools/call":
                try:
                    params = CallToolRequestParams.model_validate(request.params or {})
                except ValidationError as e:
                    raise InvalidRequest("Invalid tools/call parameters") from e
                result = await self.handle_tool_call(params.name, params.arguments, ctx)
                return result.model_dump(by_alias=True, exclude_none=True)
            case _:
                raise MethodNotFound(request.method)

    def handle_tool_list(self) -> list[Tool]:
        return self.tools.list_tools()

    async def handle_tool_call(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        context: RequestContext,
    ) -> CallToolResult:
        """Validate and run a tool.

        Raises UnknownTool / InvalidArguments before anything runs. Once the
        handler is invoked every outcome is a CallToolResult.
        """
        tool = self.tools.get(name)
        if tool is None:
            raise UnknownTool(name)
        args = tool.validate_arguments(arguments)

        logger.info(f"Calling tool {name}")
        try:
            with anyio.fail_after(self.call_timeout):
                result = await tool.handler(context, args)
        except TimeoutError:
            logger.warning(f"Tool {name} exceeded {self.call_timeout}s")
            return upstream_error_result(UpstreamTimeout(f"Tool call exceeded {self.call_timeout:g}s"))
        except UpstreamError as e:
            logger.warning(f"Tool {name} failed upstream: {e.kind} {e.message}")
            return upstream_error_result(e)
        except ToolError as e:
            logger.info(f"Tool {name} rejected input: {e}")
            return tool_error_result(e)
        except Exception:
            logger.exception(f"Tool {name} crashed")
            return internal_error_result()

        if isinstance(result, str):
            return CallToolResult.text(result)
        return result

    # --- Handshake ---

    def _parse_initialize(self, request: JSONRPCRequest) -> InitializeRequestParams:
        try:
            return InitializeRequestParams.model_validate(request.params or {})
        except ValidationError as e:
            raise InvalidRequest("Invalid initialize parameters") from e

    def _complete_handshake(self, session: Session, params: InitializeRequestParams) -> dict[str, Any]:
        protocol_version = params.protocol_version
        if protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = LATEST_PROTOCOL_VERSION

        session.client_info = params.client_info
        session.protocol_version = protocol_version

        result = InitializeResult(
            protocol_version=protocol_version,
            capabilities=ServerCapabilities(tools={"listChanged": False}),
            server_info=Implementation(name=self.name, version=self.version),
            instructions=self.instructions,
        )
        return result.model_dump(by_alias=True, exclude_none=True)
