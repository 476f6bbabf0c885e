"""
Push-stream (SSE) transport.

``GET /sse`` opens an event stream bound to a fresh implicit session. The
first event, ``endpoint``, tells the client where to POST its frames:

    event: endpoint
    data: /messages/?session_id=<id>

Each POST is acknowledged with 202 and its response is delivered on the
stream as a ``message`` event. A worker per connection processes frames one
at a time, so responses keep the order of their requests. Dropping the
stream ends the session.

Example usage:
```
    sse = SseTransport(gateway, "/messages/")
    routes = [
        Route("/sse", endpoint=ASGIEndpoint(sse.handle_sse), methods=["GET"]),
        Mount("/messages/", app=sse.handle_post_message),
    ]
```
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from erp_mcp.context import RequestContext
from erp_mcp.errors import SessionNotFound
from erp_mcp.gateway import Gateway
from erp_mcp.session import Session, TransportKind
from erp_mcp.transport.framing import FrameError, decode_frame
from erp_mcp.types import INVALID_REQUEST, ErrorData, JSONRPCErrorResponse, JSONRPCMessage, dump_message

logger = logging.getLogger(__name__)

AUTH_TOKEN_HEADER = "x-supabase-token"


@dataclass
class InboundFrame:
    message: JSONRPCMessage
    auth_token: str | None = None


class StreamBinding:
    """Inbound frame queue and outbound message queue of one stream connection."""

    def __init__(self, buffer_size: int = 32):
        self.inbound_writer: MemoryObjectSendStream[InboundFrame]
        self.inbound_reader: MemoryObjectReceiveStream[InboundFrame]
        self.outbound_writer: MemoryObjectSendStream[JSONRPCMessage]
        self.outbound_reader: MemoryObjectReceiveStream[JSONRPCMessage]

        self.inbound_writer, self.inbound_reader = anyio.create_memory_object_stream[InboundFrame](buffer_size)
        self.outbound_writer, self.outbound_reader = anyio.create_memory_object_stream[JSONRPCMessage](buffer_size)

    def close(self) -> None:
        self.inbound_writer.close()
        self.outbound_writer.close()


def _error_response(status: int, message: str) -> Response:
    body = dump_message(JSONRPCErrorResponse(id=None, error=ErrorData(code=INVALID_REQUEST, message=message)))
    return Response(body, status_code=status, media_type="application/json")


class SseTransport:
    """
    SSE server transport. Two ASGI handlers:

    1. handle_sse: long-lived GET that streams server messages.
    2. handle_post_message: receives client frames for an existing stream.
    """

    def __init__(self, gateway: Gateway, endpoint: str = "/messages/"):
        self.gateway = gateway
        self._endpoint = endpoint
        logger.debug(f"SseTransport initialized with endpoint: {endpoint}")

    async def handle_sse(self, scope: Scope, receive: Receive, send: Send) -> None:
        session = self.gateway.open_session(TransportKind.STREAM)
        binding = StreamBinding()
        session.binding = binding

        root_path = scope.get("root_path", "")
        endpoint_url = f"{root_path}{self._endpoint}?session_id={session.session_id}"
        logger.debug(f"Stream opened for session {session.session_id}")

        async def worker() -> None:
            await self._process_frames(session, binding)

        async def event_stream() -> AsyncIterator[dict[str, Any]]:
            yield {"event": "endpoint", "data": endpoint_url}
            async with binding.outbound_reader:
                async for message in binding.outbound_reader:
                    yield {"event": "message", "data": dump_message(message)}

        response = EventSourceResponse(event_stream(), data_sender_callable=worker)
        try:
            await response(scope, receive, send)
        finally:
            if session.session_id in self.gateway.registry:
                self.gateway.handle_termination(session.session_id)
            logger.debug(f"Stream closed for session {session.session_id}")

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await self._accept_frame(request)
        await response(scope, receive, send)

    async def _accept_frame(self, request: Request) -> Response:
        session_id = request.query_params.get("session_id")
        if session_id is None:
            return _error_response(HTTPStatus.BAD_REQUEST, "session_id is required")

        try:
            session = self.gateway.resolve(session_id)
        except SessionNotFound as e:
            logger.warning(f"Could not find session for ID: {session_id}")
            return _error_response(HTTPStatus.NOT_FOUND, e.message)
        binding = session.binding
        if not isinstance(binding, StreamBinding):
            return _error_response(HTTPStatus.NOT_FOUND, f"Session not found: {session_id}")

        try:
            message = decode_frame(await request.body())
        except FrameError as e:
            logger.warning(f"Rejected frame for session {session_id}: {e.message}")
            return _error_response(HTTPStatus.BAD_REQUEST, e.message)

        try:
            await binding.inbound_writer.send(InboundFrame(message, request.headers.get(AUTH_TOKEN_HEADER)))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            return _error_response(HTTPStatus.NOT_FOUND, f"Session not found: {session_id}")
        return Response("Accepted", status_code=HTTPStatus.ACCEPTED)

    async def _process_frames(self, session: Session, binding: StreamBinding) -> None:
        async with binding.inbound_reader:
            async for frame in binding.inbound_reader:
                context = RequestContext(session=session, auth_token=frame.auth_token)
                response = await self.gateway.handle_message(frame.message, session=session, context=context)
                if response is None:
                    continue
                try:
                    await binding.outbound_writer.send(response)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    logger.debug(f"Stream for session {session.session_id} closed, dropping response")
                    return
