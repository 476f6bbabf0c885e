"""Shared httpx plumbing for the backend collaborators."""

from typing import Any, Protocol

import httpx

from erp_mcp.errors import UpstreamServerError, UpstreamTimeout, classify_status

__all__ = ["HttpClientFactory", "create_http_client", "parse_json", "raise_for_upstream_status", "send_upstream"]

STATUS_MESSAGES: dict[int, str] = {
    400: "Bad request - check the request format",
    401: "Authorization failed - invalid token",
    403: "Access to the resource is forbidden",
    404: "API endpoint not found",
    408: "Request timed out",
    429: "Rate limit exceeded - try again later",
}


class HttpClientFactory(Protocol):
    def __call__(self, **kwargs: Any) -> httpx.AsyncClient: ...


def create_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with the project defaults.

    Defaults to no redirects and a 30 second timeout; any keyword accepted by
    ``httpx.AsyncClient`` overrides them (``timeout``, ``headers``,
    ``transport`` for tests). Use it as an async context manager.
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": False,
        "timeout": httpx.Timeout(30.0),
    }
    default_kwargs.update(kwargs)
    return httpx.AsyncClient(**default_kwargs)


def raise_for_upstream_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    status = response.status_code
    try:
        details: Any = response.json()
    except ValueError:
        details = response.text
    if status >= 500:
        message = "Backend server error - try again later"
    else:
        message = STATUS_MESSAGES.get(status, f"API error (status {status})")
    raise classify_status(status, message, details)


async def send_upstream(client: httpx.AsyncClient, request: httpx.Request, timeout: float) -> httpx.Response:
    """Send a request, translating transport failures into upstream errors."""
    try:
        response = await client.send(request)
    except httpx.TimeoutException as e:
        raise UpstreamTimeout(f"Request timed out after {timeout:g}s") from e
    except httpx.TransportError as e:
        raise UpstreamServerError("Could not connect to the backend - check the network", 503) from e
    raise_for_upstream_status(response)
    return response


def parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamServerError("Backend returned a response that is not JSON") from e
