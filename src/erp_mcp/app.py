"""Starlette application serving every HTTP surface of the gateway."""

from __future__ import annotations

import contextlib
import json
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route
from starlette.types import ASGIApp, Receive, Scope, Send

from erp_mcp import __version__
from erp_mcp.config import Settings
from erp_mcp.context import RequestContext
from erp_mcp.errors import GatewayError
from erp_mcp.gateway import Gateway
from erp_mcp.handlers import build_tool_table
from erp_mcp.services.database import DatabaseClient
from erp_mcp.services.http import HttpClientFactory, create_http_client
from erp_mcp.services.orders import OrderClient
from erp_mcp.transport.sse import SseTransport
from erp_mcp.transport.streamable_http import (
    AUTH_TOKEN_HEADER,
    StreamableHTTPASGIApp,
    StreamableHTTPSessionManager,
)
from erp_mcp.types import LATEST_PROTOCOL_VERSION, UNAUTHORIZED
from erp_mcp.utilities.logging import redact_sensitive_data

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/health", "/test/verify-order"})


def create_gateway(settings: Settings, *, http_client_factory: HttpClientFactory = create_http_client) -> Gateway:
    """Wire the collaborators and the tool table from settings."""
    orders = OrderClient(
        settings.verification_url,
        settings.supabase_bearer_token,
        timeout=settings.timeout_seconds,
        http_client_factory=http_client_factory,
    )
    database = DatabaseClient(
        settings.supabase_project_url,
        settings.supabase_bearer_token,
        timeout=settings.timeout_seconds,
        default_limit=settings.default_query_limit,
        http_client_factory=http_client_factory,
    )
    return Gateway(build_tool_table(orders, database), call_timeout=settings.tool_call_timeout)


class APIKeyMiddleware:
    """Requires ``X-API-Key: <key>`` or ``Authorization: Bearer <key>`` outside the public paths."""

    def __init__(self, app: ASGIApp, api_key: str, public_paths: frozenset[str] = PUBLIC_PATHS):
        self.app = app
        self.api_key = api_key
        self.public_paths = public_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.public_paths:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        presented = request.headers.get("x-api-key")
        if presented is None:
            authorization = request.headers.get("authorization", "")
            if authorization.lower().startswith("bearer "):
                presented = authorization[7:]

        if not presented:
            logger.warning(f"Missing API key for {scope['path']}")
            await self._send_auth_error(send, HTTPStatus.UNAUTHORIZED, "Unauthorized: API key required")
            return
        if not secrets.compare_digest(presented.encode(), self.api_key.encode()):
            logger.warning(f"Invalid API key for {scope['path']}: {redact_sensitive_data(dict(request.headers))}")
            await self._send_auth_error(send, HTTPStatus.FORBIDDEN, "Forbidden: Invalid API key")
            return

        await self.app(scope, receive, send)

    async def _send_auth_error(self, send: Send, status_code: int, message: str) -> None:
        body = {"jsonrpc": "2.0", "error": {"code": UNAUTHORIZED, "message": message}, "id": None}
        body_bytes = json.dumps(body).encode()

        await send(
            {
                "type": "http.response.start",
                "status": status_code,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body_bytes)).encode()),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body_bytes})


class ASGIEndpoint:
    """Lets a route hand the raw ASGI call to a transport handler."""

    def __init__(self, handler: Callable[[Scope, Receive, Send], Awaitable[None]]):
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handler(scope, receive, send)


def create_app(gateway: Gateway, settings: Settings | None = None) -> Starlette:
    """Build the Starlette app.

    Routes: ``/health``, ``/``, ``/mcp`` (stateful HTTP), ``/sse`` and
    ``/messages/`` (push stream) and ``/test/verify-order``. When
    ``settings.mcp_api_key`` is set every other path is behind the API key.
    """
    session_manager = StreamableHTTPSessionManager(gateway)
    sse = SseTransport(gateway, "/messages/")

    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "status": "healthy",
                "service": gateway.name,
                "version": __version__,
                "protocol": LATEST_PROTOCOL_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "activeSessions": len(gateway.registry),
            }
        )

    async def info(request: Request) -> Response:
        return JSONResponse(
            {
                "name": gateway.name,
                "version": gateway.version,
                "protocol": LATEST_PROTOCOL_VERSION,
                "endpoints": {
                    "mcp": "/mcp",
                    "sse": "/sse",
                    "messages": "/messages/",
                    "health": "/health",
                    "verifyOrder": "/test/verify-order",
                },
                "tools": gateway.tools.names,
                "activeSessions": len(gateway.registry),
            }
        )

    async def verify_order(request: Request) -> Response:
        try:
            body: Any = await request.json()
        except ValueError:
            body = None
        order_number = body.get("numer_zamowienia") if isinstance(body, dict) else None
        if not isinstance(order_number, str):
            return JSONResponse(
                {"error": "numer_zamowienia is required and must be a string"},
                status_code=HTTPStatus.BAD_REQUEST,
            )

        context = RequestContext(auth_token=request.headers.get(AUTH_TOKEN_HEADER), request=request)
        try:
            result = await gateway.handle_tool_call("verify_order", {"numer_zamowienia": order_number}, context)
        except GatewayError as e:
            return JSONResponse({"error": e.message}, status_code=HTTPStatus.BAD_REQUEST)
        return JSONResponse(
            {"success": not result.is_error, "result": result.model_dump(by_alias=True, exclude_none=True)}
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    middleware: list[Middleware] = []
    if settings is not None and settings.mcp_api_key:
        middleware.append(Middleware(APIKeyMiddleware, api_key=settings.mcp_api_key))

    routes: list[Route | Mount] = [
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/", endpoint=info, methods=["GET"]),
        Route("/mcp", endpoint=StreamableHTTPASGIApp(session_manager)),
        Route("/sse", endpoint=ASGIEndpoint(sse.handle_sse), methods=["GET"]),
        Mount("/messages/", app=sse.handle_post_message),
        Route("/test/verify-order", endpoint=verify_order, methods=["POST"]),
    ]

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
