"""Test doubles shared by the test modules."""

from contextlib import asynccontextmanager
from typing import Any

from pydantic import BaseModel

from study_chat.clients.anthropic import AnthropicResponse, TokenUsage
from study_chat.models.llm import TextBlock, ToolUseBlock
from study_chat.models.messages import Message, TextPart, ToolInvocationPart, ToolInvocationState
from study_chat.tools.base import ToolDefinition


class FakeStream:
    def __init__(self, deltas: list[str], response: AnthropicResponse):
        self.deltas = deltas
        self.response = response

    async def text_deltas(self):
        for delta in self.deltas:
            yield delta

    async def final_response(self) -> AnthropicResponse:
        return self.response


class FakeAnthropicClient:
    """Replays scripted model steps; an exception in the script is raised instead."""

    def __init__(self, steps: list[tuple[list[str], AnthropicResponse] | Exception] | None = None):
        self.steps = list(steps or [])
        self.calls: list[dict[str, Any]] = []

    @asynccontextmanager
    async def stream_message(self, messages, system_prompt, tools=None, **kwargs):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "tools": tools})
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        deltas, response = step
        yield FakeStream(deltas, response)


def text_step(text: str) -> tuple[list[str], AnthropicResponse]:
    return [text], AnthropicResponse(
        content=[TextBlock(text=text)],
        stop_reason="end_turn",
        usage=TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="fake-model",
    )


def tool_step(invocation_id: str, name: str, args: dict[str, Any] | None = None) -> tuple[list[str], AnthropicResponse]:
    return [], AnthropicResponse(
        content=[ToolUseBlock(id=invocation_id, name=name, input=args or {})],
        stop_reason="tool_use",
        usage=TokenUsage(input_tokens=20, output_tokens=8, total_tokens=28),
        model="fake-model",
    )


class LessonInput(BaseModel):
    lesson: int


class RecordingExecutor:
    """Tool executor that records its calls and returns a fixed result."""

    def __init__(self, result: Any = None, error: Exception | None = None, log: list[str] | None = None, name: str = ""):
        self.result = result
        self.error = error
        self.calls: list[BaseModel] = []
        self.log = log
        self.name = name

    async def __call__(self, args: BaseModel) -> Any:
        self.calls.append(args)
        if self.log is not None:
            self.log.append(self.name)
        if self.error is not None:
            raise self.error
        return self.result


def auto_tool(name: str, executor: RecordingExecutor, input_schema_class=None) -> ToolDefinition:
    if input_schema_class is None:
        return ToolDefinition(name=name, description=f"{name} tool", execute=executor)
    return ToolDefinition(
        name=name, description=f"{name} tool", input_schema_class=input_schema_class, execute=executor
    )


def confirmation_tool(name: str) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"{name} tool, asks the user first")


def invocation(
    invocation_id: str,
    tool_name: str,
    state: ToolInvocationState = ToolInvocationState.CALL_PENDING,
    args: dict[str, Any] | None = None,
    **kwargs,
) -> ToolInvocationPart:
    return ToolInvocationPart(invocation_id=invocation_id, tool_name=tool_name, args=args or {}, state=state, **kwargs)


def assistant(*parts, message_id: str | None = None) -> Message:
    parts = [TextPart(text=part) if isinstance(part, str) else part for part in parts]
    if message_id is None:
        return Message(role="assistant", parts=parts)
    return Message(id=message_id, role="assistant", parts=parts)
