"""Resolution of pending tool invocations before a model call.

The resolver walks a transcript in order and drives every invocation it can
to a terminal state: auto tools and approved tools are executed, rejected
ones are closed, and invocations still waiting for the user are left alone.
Executions happen one at a time so that a later call observes the side
effects of an earlier one, and status events reach the stream in the same
order as the invocations appear in the transcript.
"""

import asyncio
from collections import defaultdict

from pydantic import BaseModel, ValidationError

from study_chat.models.messages import (
    ToolDecisionPart,
    ToolInvocationPart,
    ToolInvocationState,
    Transcript,
)
from study_chat.models.stream import StatusEvent, ToolCompletedEvent, ToolFailedEvent, ToolRejectedEvent
from study_chat.streaming.multiplexer import EventSink
from study_chat.tools.base import ExecutionMap, ToolDefinition, ToolExecutor, ToolSet
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS = 30.0


async def execute_invocation(
    part: ToolInvocationPart,
    tool: ToolDefinition,
    executor: ToolExecutor | None,
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
) -> ToolInvocationPart:
    """Run one invocation and return it in the ``call-result`` state.

    Never raises for tool-level problems: invalid arguments, a missing
    executor, an exception from the executor and a timeout all become an
    error payload on the returned part.
    """
    if executor is None:
        return _failed(part, f"No execution registered for tool {tool.name}")

    try:
        args = tool.parse_input(part.args)
    except ValidationError as e:
        logger.warning(f"Invalid arguments for tool {tool.name} ({part.invocation_id}): {e}")
        return _failed(part, f"Invalid arguments for tool {tool.name}: {e}")

    logger.debug(f"Executing tool: {tool.name} with input: {part.args}")
    try:
        result = await asyncio.wait_for(executor(args), timeout=timeout_seconds)
    except TimeoutError:
        logger.error(f"Tool {tool.name} timed out after {timeout_seconds}s")
        return _failed(part, f"Tool {tool.name} timed out after {timeout_seconds}s")
    except Exception as e:
        logger.error(f"Tool {tool.name} failed: {e}")
        return _failed(part, str(e) or type(e).__name__)

    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")

    logger.debug(f"Tool {tool.name} succeeded: {str(result)[:100]}...")
    return part.model_copy(update={"state": ToolInvocationState.CALL_RESULT, "result": result, "error": None})


def status_event_for(part: ToolInvocationPart) -> StatusEvent:
    """The status event announcing a terminal invocation."""
    if part.state == ToolInvocationState.CALL_REJECTED:
        return ToolRejectedEvent(invocation_id=part.invocation_id, tool_name=part.tool_name)
    if part.error is not None:
        return ToolFailedEvent(invocation_id=part.invocation_id, tool_name=part.tool_name, error=part.error)
    return ToolCompletedEvent(invocation_id=part.invocation_id, tool_name=part.tool_name, result=part.result)


def _failed(part: ToolInvocationPart, error: str) -> ToolInvocationPart:
    return part.model_copy(update={"state": ToolInvocationState.CALL_RESULT, "result": None, "error": error})


def _collect_decisions(transcript: Transcript) -> dict[str, list[tuple[int, ToolDecisionPart]]]:
    decisions: dict[str, list[tuple[int, ToolDecisionPart]]] = defaultdict(list)
    for index, message in enumerate(transcript):
        for part in message.parts:
            if isinstance(part, ToolDecisionPart):
                decisions[part.invocation_id].append((index, part))
    return decisions


class ConfirmationResolver:
    """Drives resolvable tool invocations in a transcript to terminal states."""

    def __init__(self, timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS):
        """Initialize the resolver.

        Args:
            timeout_seconds: Upper bound on a single executor call
        """
        self.timeout_seconds = timeout_seconds

    async def resolve(
        self,
        transcript: Transcript,
        tools: ToolSet,
        executions: ExecutionMap,
        sink: EventSink,
        abort: asyncio.Event | None = None,
    ) -> Transcript:
        """Resolve every resolvable invocation in the transcript.

        Args:
            transcript: Current transcript; not modified
            tools: Combined tool set (local and dynamic)
            executions: Implementations of the confirmation tools
            sink: Receives one status event per executed or rejected invocation
            abort: When set, resolution stops before the next invocation

        Returns:
            A new transcript with the same messages and parts in the same order
        """
        decisions = _collect_decisions(transcript)
        resolved: Transcript = []
        aborted = False

        for index, message in enumerate(transcript):
            if aborted or not message.tool_invocations:
                resolved.append(message)
                continue

            new_parts = []
            changed = False
            for part in message.parts:
                if not isinstance(part, ToolInvocationPart) or aborted:
                    new_parts.append(part)
                    continue

                if abort is not None and abort.is_set():
                    logger.info(f"Tool resolution aborted before invocation {part.invocation_id}")
                    aborted = True
                    new_parts.append(part)
                    continue

                updated = await self._resolve_invocation(part, index, tools, executions, decisions, sink)
                changed = changed or updated is not part
                new_parts.append(updated)

            resolved.append(message.model_copy(update={"parts": new_parts}) if changed else message)

        return resolved

    async def _resolve_invocation(
        self,
        part: ToolInvocationPart,
        message_index: int,
        tools: ToolSet,
        executions: ExecutionMap,
        decisions: dict[str, list[tuple[int, ToolDecisionPart]]],
        sink: EventSink,
    ) -> ToolInvocationPart:
        if part.is_terminal:
            return part

        tool = tools.get(part.tool_name)
        if tool is None:
            logger.warning(f"Unknown tool {part.tool_name} for invocation {part.invocation_id}, leaving unresolved")
            return part

        # An auto-style call on a confirmation tool must still wait for the user
        if part.state == ToolInvocationState.CALL_PENDING and tool.requires_confirmation:
            logger.info(f"Tool {tool.name} requires confirmation, invocation {part.invocation_id} is now awaiting")
            part = part.model_copy(update={"state": ToolInvocationState.CALL_AWAITING_CONFIRMATION})

        if part.state == ToolInvocationState.CALL_AWAITING_CONFIRMATION:
            decision = self._find_decision(part.invocation_id, message_index, decisions)
            if decision is None:
                return part

            if not decision.approved:
                logger.info(f"User rejected tool {tool.name} ({part.invocation_id})")
                rejected = part.model_copy(update={"state": ToolInvocationState.CALL_REJECTED})
                sink.emit(
                    ToolRejectedEvent(
                        invocation_id=part.invocation_id,
                        tool_name=part.tool_name,
                        reason=decision.reason,
                    )
                )
                return rejected

            logger.info(f"User approved tool {tool.name} ({part.invocation_id})")
            part = part.model_copy(update={"state": ToolInvocationState.CALL_APPROVED})

        executor = executions.get(tool.name) if tool.requires_confirmation else tool.execute
        resolved = await execute_invocation(part, tool, executor, self.timeout_seconds)
        sink.emit(status_event_for(resolved))
        return resolved

    def _find_decision(
        self,
        invocation_id: str,
        message_index: int,
        decisions: dict[str, list[tuple[int, ToolDecisionPart]]],
    ) -> ToolDecisionPart | None:
        """First decision for the invocation made after the message holding it."""
        for index, decision in decisions.get(invocation_id, []):
            if index > message_index:
                return decision
        return None

