"""Tools for the study assistant."""

from study_chat.tools.base import (
    EmptyInput,
    ExecutionMap,
    StaticToolProvider,
    ToolDefinition,
    ToolExecutor,
    ToolProvider,
    ToolSet,
)
from study_chat.tools.registry import ToolsRegistry, merge_tool_sets, validate_executions

__all__ = [
    "EmptyInput",
    "ExecutionMap",
    "StaticToolProvider",
    "ToolDefinition",
    "ToolExecutor",
    "ToolProvider",
    "ToolSet",
    "ToolsRegistry",
    "merge_tool_sets",
    "validate_executions",
]
