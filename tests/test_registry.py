"""Tests for tool definitions and the tools registry."""

import logging

import pytest

from study_chat.exceptions import ConfigurationError, MissingExecutionError, ToolNameCollisionError
from study_chat.tools import EmptyInput, StaticToolProvider, ToolsRegistry, merge_tool_sets, validate_executions
from tests.fakes import LessonInput, RecordingExecutor, auto_tool, confirmation_tool


class TestToolDefinition:
    """Tests for individual tool definitions."""

    def test_tool_without_execute_requires_confirmation(self):
        assert confirmation_tool("deleteNotes").requires_confirmation
        assert not auto_tool("getLessonInfo", RecordingExecutor()).requires_confirmation

    def test_default_input_schema_is_empty(self):
        tool = confirmation_tool("deleteNotes")

        assert tool.input_schema_class is EmptyInput
        assert tool.get_json_schema()["properties"] == {}

    def test_parse_input(self):
        tool = auto_tool("getLessonInfo", RecordingExecutor(), LessonInput)

        assert tool.parse_input({"lesson": "4"}) == LessonInput(lesson=4)


class TestToolsRegistry:
    """Tests for the local tool catalogue."""

    def test_register_and_lookup(self):
        registry = ToolsRegistry([confirmation_tool("deleteNotes")])
        registry.register_tool(auto_tool("getLessonInfo", RecordingExecutor()))

        assert registry.get_tool_names() == ["deleteNotes", "getLessonInfo"]
        assert registry.has_tool("getLessonInfo")
        assert registry.get_tool("missing") is None

    def test_duplicate_registration_raises(self):
        registry = ToolsRegistry([confirmation_tool("deleteNotes")])

        with pytest.raises(ToolNameCollisionError):
            registry.register_tool(confirmation_tool("deleteNotes"))

    def test_empty_registry(self):
        assert ToolsRegistry().as_tool_set() == {}

    def test_merged_with_dynamic_tools(self):
        registry = ToolsRegistry([confirmation_tool("deleteNotes")])
        dynamic = {"searchDictionary": auto_tool("searchDictionary", RecordingExecutor())}

        merged = registry.merged_with(dynamic)

        assert sorted(merged) == ["deleteNotes", "searchDictionary"]
        assert registry.get_tool_names() == ["deleteNotes"]

    def test_collision_lists_all_names(self):
        local = {"a": confirmation_tool("a"), "b": confirmation_tool("b")}
        dynamic = {"b": confirmation_tool("b"), "a": confirmation_tool("a"), "c": confirmation_tool("c")}

        with pytest.raises(ToolNameCollisionError) as exc_info:
            merge_tool_sets(local, dynamic)

        assert exc_info.value.names == ["a", "b"]
        assert isinstance(exc_info.value, ConfigurationError)

    @pytest.mark.asyncio
    async def test_static_provider(self):
        provider = StaticToolProvider([auto_tool("searchDictionary", RecordingExecutor())])

        tools = await provider.list_tools()

        assert list(tools) == ["searchDictionary"]


class TestValidateExecutions:
    """Tests for checking the execution map against the tool set."""

    def test_confirmation_tool_needs_execution(self):
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}

        with pytest.raises(MissingExecutionError) as exc_info:
            validate_executions(tools, {})

        assert exc_info.value.names == ["deleteNotes"]

    def test_auto_tools_need_no_execution(self):
        validate_executions({"getLessonInfo": auto_tool("getLessonInfo", RecordingExecutor())}, {})

    def test_unused_execution_is_logged(self, caplog):
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        executions = {"deleteNotes": RecordingExecutor(), "stale": RecordingExecutor()}

        with caplog.at_level(logging.WARNING, logger="study_chat.tools.registry"):
            validate_executions(tools, executions)

        assert "stale" in caplog.text
