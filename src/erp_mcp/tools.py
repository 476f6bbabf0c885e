"""Static tool dispatch table.

A tool is a name, a pydantic model describing its arguments, and an async
handler. The model is the single source of truth for the argument constraints:
its JSON schema is what ``tools/list`` advertises and its validation is what
``tools/call`` enforces.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from erp_mcp.context import RequestContext
from erp_mcp.errors import InvalidArguments
from erp_mcp.types import CallToolResult, Tool

logger = logging.getLogger(__name__)

ToolHandler = Callable[[RequestContext, Any], Awaitable[CallToolResult | str]]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    arguments: type[BaseModel]
    handler: ToolHandler
    description: str | None = None
    title: str | None = None

    @property
    def input_schema(self) -> dict[str, Any]:
        schema = self.arguments.model_json_schema(by_alias=True)
        schema.pop("title", None)
        schema.setdefault("required", [])
        return schema

    def to_tool(self) -> Tool:
        """The public view: everything except the handler."""
        return Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            input_schema=self.input_schema,
        )

    def validate_arguments(self, arguments: dict[str, Any] | None) -> BaseModel:
        """Validate raw arguments, naming the first offending field on failure."""
        try:
            return self.arguments.model_validate(arguments or {})
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "arguments"
            raise InvalidArguments(field, error["msg"]) from e


class ToolDispatchTable:
    """Name -> descriptor mapping. Built once at startup and never mutated afterwards."""

    def __init__(self, tools: Iterable[ToolDescriptor] = ()):
        self._tools: dict[str, ToolDescriptor] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return [tool.to_tool() for tool in self._tools.values()]

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
