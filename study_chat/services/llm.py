"""LLM service: streams a turn through the model with a bounded tool loop."""

import asyncio
import json
from collections.abc import AsyncIterator

from study_chat.clients.anthropic import (
    AnthropicClient,
    AnthropicMessage,
    AnthropicResponse,
    AnthropicTool,
    CacheControl,
    get_anthropic_client,
)
from study_chat.exceptions import UnresolvedToolInvocationError
from study_chat.models.llm import (
    ContentBlock,
    LLMMessage,
    LLMUsage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    TurnResult,
)
from study_chat.models.messages import (
    Message,
    Part,
    TextPart,
    ToolInvocationPart,
    ToolInvocationState,
    Transcript,
    generate_id,
)
from study_chat.models.stream import (
    AwaitingConfirmationEvent,
    StepFinishedEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    TurnFinishedEvent,
)
from study_chat.services.tool_resolver import DEFAULT_TOOL_TIMEOUT_SECONDS, execute_invocation, status_event_for
from study_chat.streaming.protocol import REJECTION_MESSAGE
from study_chat.tools.base import ToolSet
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_STEPS = 10

FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
}


def to_llm_messages(transcript: Transcript) -> tuple[list[LLMMessage], list[str]]:
    """Convert a resolved transcript into model messages.

    Returns:
        The conversation messages and the text of any system messages

    Raises:
        UnresolvedToolInvocationError: If any tool invocation is not terminal
    """
    messages: list[LLMMessage] = []
    system_notes: list[str] = []

    for message in transcript:
        if message.role == "system":
            if message.text_content:
                system_notes.append(message.text_content)
            continue

        if message.role == "assistant":
            for llm_message in _assistant_messages(message):
                _append(messages, llm_message)
            continue

        text = message.text_content
        if text:
            _append(messages, LLMMessage(role="user", content=[TextBlock(text=text)]))

    return messages, system_notes


def _assistant_messages(message: Message) -> list[LLMMessage]:
    """Split an assistant message into alternating tool-use and tool-result messages."""
    converted: list[LLMMessage] = []
    blocks: list[ContentBlock] = []
    results: list[ContentBlock] = []

    def flush() -> None:
        if blocks:
            converted.append(LLMMessage(role="assistant", content=list(blocks)))
        if results:
            converted.append(LLMMessage(role="user", content=list(results)))
        blocks.clear()
        results.clear()

    for part in message.parts:
        if isinstance(part, TextPart):
            if results:
                flush()
            if part.text:
                blocks.append(TextBlock(text=part.text))
        elif isinstance(part, ToolInvocationPart):
            if not part.is_terminal:
                raise UnresolvedToolInvocationError(part.invocation_id, part.tool_name, part.state.value)
            blocks.append(ToolUseBlock(id=part.invocation_id, name=part.tool_name, input=part.args))
            results.append(tool_result_block(part))

    flush()
    return converted


def _append(messages: list[LLMMessage], message: LLMMessage) -> None:
    """Append, merging with the previous message when the roles match."""
    if messages and messages[-1].role == message.role:
        previous = messages[-1]
        messages[-1] = LLMMessage(role=previous.role, content=[*previous.content, *message.content])
    else:
        messages.append(message)


def tool_result_block(part: ToolInvocationPart) -> ToolResultBlock:
    """The tool result the model sees for a terminal invocation."""
    if part.state == ToolInvocationState.CALL_REJECTED:
        return ToolResultBlock(tool_use_id=part.invocation_id, content=f"Error: {REJECTION_MESSAGE}", is_error=True)

    if part.error is not None:
        return ToolResultBlock(tool_use_id=part.invocation_id, content=f"Error: {part.error}", is_error=True)

    content = part.result if isinstance(part.result, str) else json.dumps(part.result, default=str)
    return ToolResultBlock(tool_use_id=part.invocation_id, content=content)


def build_anthropic_tools(tools: ToolSet) -> list[AnthropicTool]:
    """Tool schemas for the API, with cache control on the last one."""
    tool_list = list(tools.values())
    anthropic_tools = []

    for i, tool in enumerate(tool_list):
        # Cache control on the last tool caches all tool definitions
        cache_control = CacheControl(type="ephemeral", ttl="5m") if i == len(tool_list) - 1 else None
        anthropic_tools.append(
            AnthropicTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.get_json_schema(),
                cache_control=cache_control,
            )
        )

    return anthropic_tools


class ModelTurn:
    """One turn of model output.

    Iterate ``events()`` to drive the turn; once exhausted, ``result`` holds the
    assistant message that was produced.
    """

    def __init__(
        self,
        client: AnthropicClient,
        transcript: Transcript,
        system_prompt: str,
        tools: ToolSet,
        max_steps: int = DEFAULT_MAX_STEPS,
        tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        abort: asyncio.Event | None = None,
    ):
        self.client = client
        self.transcript = transcript
        self.system_prompt = system_prompt
        self.tools = tools
        self.max_steps = max_steps
        self.tool_timeout_seconds = tool_timeout_seconds
        self.abort = abort or asyncio.Event()
        self.result: TurnResult | None = None

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Stream the turn, running auto tools between model steps."""
        conversation, system_notes = to_llm_messages(self.transcript)
        system_prompt = "\n\n".join([self.system_prompt, *system_notes])
        anthropic_tools = build_anthropic_tools(self.tools)

        message_id = generate_id()
        parts: list[Part] = []
        usage = LLMUsage()
        finish_reason = "stop"
        steps = 0

        logger.info(
            f"Starting model turn with {len(conversation)} messages, {len(self.tools)} tools, "
            f"max_steps: {self.max_steps}"
        )

        while steps < self.max_steps:
            if self.abort.is_set():
                finish_reason = "aborted"
                break

            steps += 1
            logger.debug(f"Model step {steps}/{self.max_steps}")

            anthropic_messages = [AnthropicMessage(role=msg.role, content=msg.content) for msg in conversation]
            step_text = ""
            response: AnthropicResponse | None = None

            async with self.client.stream_message(anthropic_messages, system_prompt, anthropic_tools) as stream:
                async for delta in stream.text_deltas():
                    step_text += delta
                    yield TextDeltaEvent(text=delta)
                    if self.abort.is_set():
                        break
                else:
                    response = await stream.final_response()

            if response is None:
                logger.info(f"Model turn aborted during step {steps}")
                if step_text:
                    parts.append(TextPart(text=step_text))
                finish_reason = "aborted"
                break

            if response.usage:
                usage.add(
                    LLMUsage(
                        input_tokens=response.usage.input_tokens,
                        output_tokens=response.usage.output_tokens,
                        total_tokens=response.usage.total_tokens,
                        cache_creation_input_tokens=response.usage.cache_creation_input_tokens,
                        cache_read_input_tokens=response.usage.cache_read_input_tokens,
                    )
                )

            step_calls: list[ToolInvocationPart] = []
            for block in response.content:
                if isinstance(block, TextBlock):
                    parts.append(TextPart(text=block.text))
                elif isinstance(block, ToolUseBlock):
                    call = ToolInvocationPart(
                        invocation_id=block.id,
                        tool_name=block.name,
                        args=block.input,
                        state=ToolInvocationState.CALL_PENDING,
                    )
                    step_calls.append(call)
                    parts.append(call)
                    yield ToolCallEvent(invocation_id=call.invocation_id, tool_name=call.tool_name, args=call.args)

            finish_reason = FINISH_REASONS.get(response.stop_reason or "", response.stop_reason or "stop")
            if response.stop_reason != "tool_use" or not step_calls:
                yield StepFinishedEvent(finish_reason=finish_reason, usage=usage.as_dict())
                break

            logger.info(f"Model wants to use {len(step_calls)} tools")
            awaiting = False
            for call in step_calls:
                if self.abort.is_set():
                    # Left pending; the next turn's resolution runs it
                    break

                resolved, event = await self._run_tool_call(call)
                parts[parts.index(call)] = resolved
                if isinstance(event, AwaitingConfirmationEvent):
                    awaiting = True
                yield event

            continuing = not awaiting and not self.abort.is_set()
            yield StepFinishedEvent(finish_reason=finish_reason, usage=usage.as_dict(), is_continued=continuing)
            if not continuing:
                break

            in_progress = Message(id=message_id, role="assistant", parts=list(parts))
            conversation, _ = to_llm_messages([*self.transcript, in_progress])
        else:
            logger.warning(f"Model turn reached max steps ({self.max_steps})")

        self.result = TurnResult(
            message=Message(id=message_id, role="assistant", parts=parts),
            finish_reason=finish_reason,
            steps=steps,
            usage=usage,
        )
        logger.info(f"Model turn finished in {steps} steps: {finish_reason}")
        yield TurnFinishedEvent(finish_reason=finish_reason, usage=usage.as_dict())

    async def _run_tool_call(self, call: ToolInvocationPart) -> tuple[ToolInvocationPart, StreamEvent]:
        tool = self.tools.get(call.tool_name)
        if tool is None:
            logger.error(f"Unknown tool requested: {call.tool_name}")
            failed = call.model_copy(
                update={"state": ToolInvocationState.CALL_RESULT, "error": f"Unknown tool {call.tool_name}"}
            )
            return failed, status_event_for(failed)

        if tool.requires_confirmation:
            awaiting = call.model_copy(update={"state": ToolInvocationState.CALL_AWAITING_CONFIRMATION})
            return awaiting, AwaitingConfirmationEvent(
                invocation_id=call.invocation_id, tool_name=call.tool_name, args=call.args
            )

        resolved = await execute_invocation(call, tool, tool.execute, self.tool_timeout_seconds)
        return resolved, status_event_for(resolved)


class LLMService:
    """High-level LLM service for streaming turns."""

    def __init__(self, client: AnthropicClient | None = None):
        """Initialize LLM service.

        Args:
            client: Anthropic client (defaults to global instance, created on first use)
        """
        self._client = client

    @property
    def client(self) -> AnthropicClient:
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    def start_turn(
        self,
        transcript: Transcript,
        system_prompt: str,
        tools: ToolSet,
        max_steps: int = DEFAULT_MAX_STEPS,
        tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        abort: asyncio.Event | None = None,
    ) -> ModelTurn:
        """Prepare a turn over a fully resolved transcript."""
        return ModelTurn(
            client=self.client,
            transcript=transcript,
            system_prompt=system_prompt,
            tools=tools,
            max_steps=max_steps,
            tool_timeout_seconds=tool_timeout_seconds,
            abort=abort,
        )


_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create LLM service instance."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
