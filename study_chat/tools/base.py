"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

ToolExecutor = Callable[[BaseModel], Awaitable[Any]]
ExecutionMap = Mapping[str, ToolExecutor]
ToolSet = Mapping[str, "ToolDefinition"]


class EmptyInput(BaseModel):
    """Input schema for tools that take no parameters."""


@dataclass
class ToolDefinition:
    """Definition of a tool available to the assistant.

    A tool with an ``execute`` callable runs automatically. A tool without one
    requires the user's confirmation, and its implementation lives in the
    execution map under the same name.
    """

    name: str
    description: str
    input_schema_class: type[BaseModel] = EmptyInput
    execute: ToolExecutor | None = None

    @property
    def requires_confirmation(self) -> bool:
        return self.execute is None

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)


class ToolProvider:
    """Source of tools discovered at turn start.

    The default provider contributes nothing; subclasses connect to external
    tool servers.
    """

    async def list_tools(self) -> Mapping[str, ToolDefinition]:
        return {}


class StaticToolProvider(ToolProvider):
    """Provider backed by a fixed set of definitions."""

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools = {tool.name: tool for tool in tools or []}

    async def list_tools(self) -> Mapping[str, ToolDefinition]:
        return dict(self._tools)
