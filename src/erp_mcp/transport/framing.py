"""Decoding of raw frames at the transport boundary."""

import json

from pydantic import ValidationError

from erp_mcp.types import (
    INVALID_REQUEST,
    PARSE_ERROR,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
)


class FrameError(Exception):
    """A frame could not be decoded. Carries the error frame to send back."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_response(self) -> JSONRPCErrorResponse:
        return JSONRPCErrorResponse(id=None, error=ErrorData(code=self.code, message=self.message))


def decode_frame(raw: str | bytes) -> JSONRPCMessage:
    """Parse one JSON-RPC frame.

    Raises FrameError with PARSE_ERROR for undecodable JSON and INVALID_REQUEST
    for JSON that is not a JSON-RPC 2.0 frame.
    """
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise FrameError(PARSE_ERROR, f"Parse error: {e}") from e
    try:
        return JSONRPCMessageAdapter.validate_python(data)
    except ValidationError as e:
        raise FrameError(INVALID_REQUEST, "Invalid Request: not a JSON-RPC 2.0 message") from e
