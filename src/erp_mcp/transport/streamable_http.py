"""
Stateful Streamable HTTP transport with resumable replay.

A single endpoint (``/mcp``) serves the whole session lifecycle:

- POST without ``mcp-session-id`` carrying ``initialize`` creates a session
  and returns its id in the ``mcp-session-id`` header.
- POST with a known id routes the frame through the gateway; requests are
  answered with a JSON body, notifications and responses with 202.
- GET opens the session's event stream. Events after ``last-event-id`` are
  replayed from the event log before live events follow.
- DELETE terminates the session.

Every response frame is appended to the event log and pushed to the open GET
stream, if any.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from http import HTTPStatus
from typing import Any, cast

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from erp_mcp.context import RequestContext
from erp_mcp.errors import GatewayError, SessionNotFound
from erp_mcp.event_log import DEFAULT_MAX_EVENTS_PER_SESSION, Event
from erp_mcp.gateway import Gateway
from erp_mcp.session import Session, TransportKind
from erp_mcp.transport.framing import FrameError, decode_frame
from erp_mcp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    dump_message,
    is_initialize_request,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"
LAST_EVENT_ID_HEADER = "last-event-id"
AUTH_TOKEN_HEADER = "x-supabase-token"

# Maximum size for incoming messages
MAXIMUM_MESSAGE_SIZE = 4 * 1024 * 1024  # 4MB


class HTTPSessionBinding:
    """Connects a session to at most one standalone GET stream."""

    def __init__(self, session_id: str, buffer_size: int = DEFAULT_MAX_EVENTS_PER_SESSION):
        self.session_id = session_id
        self.buffer_size = buffer_size
        self._listener: MemoryObjectSendStream[Event] | None = None
        self._closed = False

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    def open_listener(self) -> MemoryObjectReceiveStream[Event]:
        if self._closed:
            raise SessionNotFound(self.session_id)
        if self._listener is not None:
            raise RuntimeError(f"Session {self.session_id} already has an open stream")
        send_stream, receive_stream = anyio.create_memory_object_stream[Event](self.buffer_size)
        self._listener = send_stream
        return receive_stream

    def detach_listener(self) -> None:
        if self._listener is not None:
            listener, self._listener = self._listener, None
            listener.close()

    def publish(self, event: Event) -> None:
        if self._listener is None:
            return
        try:
            self._listener.send_nowait(event)
        except anyio.WouldBlock:
            # The client can catch up by reconnecting with last-event-id.
            logger.warning(f"Stream for session {self.session_id} is lagging, dropped event {event.event_id}")
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self._listener = None

    def close(self) -> None:
        self._closed = True
        self.detach_listener()


def _error_response(
    status: int,
    error: ErrorData,
    request_id: RequestId | None = None,
    headers: dict[str, str] | None = None,
) -> Response:
    body = dump_message(JSONRPCErrorResponse(id=request_id, error=error))
    return Response(body, status_code=status, media_type="application/json", headers=headers)


def _status_for(message: JSONRPCRequest, response: JSONRPCResponse) -> int:
    if not isinstance(response, JSONRPCErrorResponse) or message.method == "tools/call":
        return HTTPStatus.OK
    if response.error.code == INTERNAL_ERROR:
        return HTTPStatus.INTERNAL_SERVER_ERROR
    return HTTPStatus.BAD_REQUEST


class StreamableHTTPSessionManager:
    """
    Owns the HTTP side of stateful sessions.

    Session state itself lives in the gateway's registry and event log; the
    manager only attaches an HTTPSessionBinding to each session it creates.

    Use ``run()`` in the lifespan of the Starlette app so open sessions are
    terminated on shutdown:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield
    """

    def __init__(self, gateway: Gateway, *, max_message_size: int = MAXIMUM_MESSAGE_SIZE):
        self.gateway = gateway
        self.max_message_size = max_message_size

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        logger.info("StreamableHTTP session manager started")
        try:
            yield
        finally:
            logger.info("StreamableHTTP session manager shutting down")
            for session in self.gateway.registry:
                if session.transport_kind is TransportKind.HTTP_STATEFUL:
                    self.gateway.handle_termination(session.session_id)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)

        match request.method:
            case "POST":
                response = await self._handle_post_request(request)
            case "GET":
                response = self._handle_get_request(request)
            case "DELETE":
                response = self._handle_delete_request(request)
            case _:
                response = Response(
                    "Method Not Allowed",
                    status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                    headers={"Allow": "GET, POST, DELETE"},
                )
        await response(scope, receive, send)

    async def _handle_post_request(self, request: Request) -> Response:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            return _error_response(
                HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
                ErrorData(code=INVALID_REQUEST, message="Unsupported Media Type: Content-Type must be application/json"),
            )

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_message_size:
            return self._too_large()
        body = await request.body()
        if len(body) > self.max_message_size:
            return self._too_large()

        try:
            message = decode_frame(body)
        except FrameError as e:
            return _error_response(HTTPStatus.BAD_REQUEST, e.to_response().error)

        request_id = message.id if isinstance(message, JSONRPCRequest) else None
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if session_id is None:
            if not isinstance(message, JSONRPCRequest) or not is_initialize_request(message):
                return _error_response(
                    HTTPStatus.BAD_REQUEST,
                    ErrorData(
                        code=INVALID_REQUEST,
                        message="Bad Request: No valid session ID provided or not an initialize request",
                    ),
                    request_id,
                )
            return self._initialize(message)

        try:
            session = self._resolve(session_id)
        except SessionNotFound as e:
            logger.info(f"Rejected POST for unknown session {session_id}")
            return _error_response(HTTPStatus.BAD_REQUEST, e.to_error_data(), request_id)

        context = RequestContext(
            session=session,
            auth_token=request.headers.get(AUTH_TOKEN_HEADER),
            request=request,
        )
        response = await self.gateway.handle_message(message, session=session, context=context)
        # The session may have been deleted while the request was in flight.
        headers = {MCP_SESSION_ID_HEADER: session.session_id} if session.is_active else None
        if response is None:
            return Response("Accepted", status_code=HTTPStatus.ACCEPTED, headers=headers)

        self._emit(session, response)
        return Response(
            dump_message(response),
            status_code=_status_for(cast(JSONRPCRequest, message), response),
            media_type="application/json",
            headers=headers,
        )

    def _initialize(self, message: JSONRPCRequest) -> Response:
        try:
            session, response = self.gateway.handle_initialize(message, TransportKind.HTTP_STATEFUL)
        except GatewayError as e:
            return _error_response(HTTPStatus.BAD_REQUEST, e.to_error_data(), message.id)

        session.binding = HTTPSessionBinding(session.session_id)
        self._emit(session, response)
        return Response(
            dump_message(response),
            status_code=HTTPStatus.OK,
            media_type="application/json",
            headers={MCP_SESSION_ID_HEADER: session.session_id},
        )

    def _handle_get_request(self, request: Request) -> Response:
        accept = request.headers.get("accept", "")
        if "text/event-stream" not in accept:
            return _error_response(
                HTTPStatus.NOT_ACCEPTABLE,
                ErrorData(code=INVALID_REQUEST, message="Not Acceptable: Client must accept text/event-stream"),
            )

        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        try:
            session = self._resolve(session_id)
        except SessionNotFound as e:
            return _error_response(HTTPStatus.BAD_REQUEST, e.to_error_data())

        binding = cast(HTTPSessionBinding, session.binding)
        if binding.has_listener:
            return _error_response(
                HTTPStatus.CONFLICT,
                ErrorData(code=INVALID_REQUEST, message="Conflict: Only one stream is allowed per session"),
            )

        # Replay and subscription happen without a suspension point in between,
        # so no event can fall into the gap.
        last_event_id = request.headers.get(LAST_EVENT_ID_HEADER)
        backlog = self.gateway.event_log.replay_since(session.session_id, last_event_id)
        live = binding.open_listener()
        logger.debug(f"Stream opened for session {session.session_id}, replaying {len(backlog)} event(s)")

        async def event_stream() -> AsyncIterator[dict[str, Any]]:
            try:
                for event in backlog:
                    yield {"id": event.event_id, "event": "message", "data": event.payload}
                async with live:
                    async for event in live:
                        yield {"id": event.event_id, "event": "message", "data": event.payload}
            finally:
                binding.detach_listener()
                logger.debug(f"Stream closed for session {session.session_id}")

        return EventSourceResponse(
            event_stream(),
            headers={MCP_SESSION_ID_HEADER: session.session_id, "Cache-Control": "no-cache, no-transform"},
        )

    def _handle_delete_request(self, request: Request) -> Response:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        try:
            self._resolve(session_id)
            self.gateway.handle_termination(session_id)
        except SessionNotFound as e:
            return _error_response(HTTPStatus.BAD_REQUEST, e.to_error_data())
        return Response(status_code=HTTPStatus.OK)

    def _resolve(self, session_id: str | None) -> Session:
        session = self.gateway.resolve(session_id)
        if not isinstance(session.binding, HTTPSessionBinding):
            raise SessionNotFound(session_id)
        return session

    def _emit(self, session: Session, message: JSONRPCMessage) -> None:
        event_id = self.gateway.record_event(session, message)
        if event_id is not None and isinstance(session.binding, HTTPSessionBinding):
            session.binding.publish(Event(event_id=event_id, payload=dump_message(message)))

    def _too_large(self) -> Response:
        return _error_response(
            HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            ErrorData(code=INVALID_REQUEST, message="Payload Too Large: Message exceeds maximum size"),
        )


class StreamableHTTPASGIApp:
    """ASGI application for the Streamable HTTP endpoint."""

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)
