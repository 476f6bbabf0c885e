"""Logging utilities for the gateway."""

import logging
from collections.abc import Mapping
from typing import Any, Literal

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "apikey",
        "x-api-key",
        "x-supabase-token",
        "supabase_bearer_token",
        "mcp_api_key",
        "cookie",
    }
)


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure logging for the gateway.

    Output goes to stderr; stdout carries the stdio protocol.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def redact_sensitive_data(
    data: Mapping[str, Any] | None,
    sensitive_keys: frozenset[str] | set[str] | None = None,
) -> dict[str, Any] | None:
    """Return a shallow copy with sensitive values replaced by "***".

    Keys are compared case-insensitively, so HTTP header mappings work as is.
    Bearer credentials keep their scheme so logs still show which kind of
    credential was sent.
    """
    if data is None:
        return None

    keys = sensitive_keys or SENSITIVE_KEYS
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() not in keys:
            redacted[key] = value
        elif isinstance(value, str) and value.lower().startswith("bearer "):
            redacted[key] = "Bearer ***"
        else:
            redacted[key] = "***"
    return redacted
