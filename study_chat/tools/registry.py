"""Tools registry for managing assistant tools."""

from collections.abc import Iterable, Mapping

from study_chat.exceptions import MissingExecutionError, ToolNameCollisionError
from study_chat.tools.base import ExecutionMap, ToolDefinition, ToolSet
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)


class ToolsRegistry:
    """Registry for managing assistant tools."""

    def __init__(self, tools: Iterable[ToolDefinition] | None = None):
        """Initialize tools registry with an optional initial catalogue."""
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            raise ToolNameCollisionError([tool.name])
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def as_tool_set(self) -> dict[str, ToolDefinition]:
        return dict(self._tools)

    def merged_with(self, dynamic_tools: Mapping[str, ToolDefinition]) -> dict[str, ToolDefinition]:
        """Union of the registered tools and a dynamically supplied set.

        Raises:
            ToolNameCollisionError: If both sides define the same name
        """
        return merge_tool_sets(self._tools, dynamic_tools)


def merge_tool_sets(local: ToolSet, dynamic: ToolSet) -> dict[str, ToolDefinition]:
    """Combine two tool sets into one namespace, refusing to shadow names."""
    collisions = set(local) & set(dynamic)
    if collisions:
        logger.error(f"Tool name collision between local and dynamic tools: {sorted(collisions)}")
        raise ToolNameCollisionError(list(collisions))

    return {**local, **dynamic}


def validate_executions(tools: ToolSet, executions: ExecutionMap) -> None:
    """Ensure every confirmation tool has an implementation to run once approved.

    Raises:
        MissingExecutionError: If a confirmation tool has no execution entry
    """
    missing = [name for name, tool in tools.items() if tool.requires_confirmation and name not in executions]
    if missing:
        raise MissingExecutionError(missing)

    unused = [name for name in executions if name not in tools]
    if unused:
        logger.warning(f"Execution map entries without a tool definition: {sorted(unused)}")
