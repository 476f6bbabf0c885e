"""Error taxonomy for the gateway and its collaborators."""

from typing import Any

from erp_mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SESSION_NOT_FOUND,
    UNKNOWN_TOOL,
    ErrorData,
)


class GatewayError(Exception):
    """Base error for protocol-level failures.

    Each subclass maps onto a JSON-RPC error code. Instances are turned into
    error responses by the gateway and never escape to a transport.
    """

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, data: Any | None = None):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_error_data(self) -> ErrorData:
        return ErrorData(code=self.code, message=self.message, data=self.data)


class InvalidRequest(GatewayError):
    """Malformed frame, or a frame that is illegal for the channel it arrived on."""

    code = INVALID_REQUEST


class MethodNotFound(InvalidRequest):
    code = METHOD_NOT_FOUND

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}")
        self.method = method


class SessionNotFound(GatewayError):
    """Unknown, expired or closed session identifier."""

    code = SESSION_NOT_FOUND

    def __init__(self, session_id: str | None):
        super().__init__(f"Session not found: {session_id}" if session_id else "Missing session ID")
        self.session_id = session_id


class UnknownTool(GatewayError):
    code = UNKNOWN_TOOL

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", data={"tool": name})
        self.name = name


class InvalidArguments(GatewayError):
    """Tool arguments violate the tool's input schema."""

    code = INVALID_PARAMS

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid argument '{field}': {reason}", data={"field": field})
        self.field = field
        self.reason = reason


class InternalError(GatewayError):
    """Unexpected failure. The message is generic so nothing internal reaches the wire."""

    code = INTERNAL_ERROR

    def __init__(self) -> None:
        super().__init__("Internal error")


class InvalidTransition(RuntimeError):
    """A session was asked to move to a state its lifecycle forbids."""


class ToolError(Exception):
    """A tool rejected its input after schema validation. The message is shown to the agent."""


class UpstreamError(Exception):
    """Failure reported by an outbound collaborator (order lookup, database)."""

    retryable: bool = False
    hint: str | None = None

    def __init__(self, message: str, status_code: int | None = None, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    @property
    def kind(self) -> str:
        return type(self).__name__


class UpstreamTimeout(UpstreamError):
    retryable = True
    hint = "The backend did not answer in time. Try again in a moment."


class UpstreamAuthFailure(UpstreamError):
    hint = "Check the configured authorization token."


class UpstreamRateLimited(UpstreamError):
    retryable = True
    hint = "Wait a moment before the next attempt."


class UpstreamServerError(UpstreamError):
    retryable = True
    hint = "The backend is having problems. Try again in a few minutes."


class UpstreamClientError(UpstreamError):
    hint = "Check the request parameters."


def classify_status(status_code: int, message: str, details: Any | None = None) -> UpstreamError:
    """Map an HTTP status from a collaborator onto the upstream error classes."""
    if status_code in (401, 403):
        return UpstreamAuthFailure(message, status_code, details)
    if status_code == 408:
        return UpstreamTimeout(message, status_code, details)
    if status_code == 429:
        return UpstreamRateLimited(message, status_code, details)
    if status_code >= 500:
        return UpstreamServerError(message, status_code, details)
    return UpstreamClientError(message, status_code, details)
