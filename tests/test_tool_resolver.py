"""Tests for tool invocation resolution."""

import asyncio

import pytest
from pydantic import BaseModel

from study_chat.models.messages import Message, ToolDecisionPart, ToolInvocationState, pending_invocations
from study_chat.services.tool_resolver import ConfirmationResolver, execute_invocation
from study_chat.streaming.multiplexer import open_stream
from tests.fakes import LessonInput, RecordingExecutor, assistant, auto_tool, confirmation_tool, invocation


async def resolve(transcript, tools, executions=None, abort=None, timeout_seconds=1.0):
    """Run the resolver and return the new transcript with the emitted lines."""
    sink, channel = open_stream()
    resolver = ConfirmationResolver(timeout_seconds=timeout_seconds)
    resolved = await resolver.resolve(transcript, tools, executions or {}, sink, abort)
    sink.close()
    return resolved, await channel.collect()


def decision(invocation_id: str, approved: bool, reason: str | None = None) -> Message:
    return Message(
        role="user", parts=[ToolDecisionPart(invocation_id=invocation_id, approved=approved, reason=reason)]
    )


class TestAutoTools:
    """Tests for tools that run without confirmation."""

    @pytest.mark.asyncio
    async def test_lesson_info_scenario(self):
        """A pending auto call is executed once and announced by a single status line."""
        executor = RecordingExecutor(result={"title": "Lesson 3", "notes": "Verbos irregulares"})
        tools = {"getLessonInfo": auto_tool("getLessonInfo", executor, LessonInput)}
        transcript = [
            Message.text("user", "What did we cover in lesson 3?"),
            assistant(invocation("call_1", "getLessonInfo", args={"lesson": 3})),
        ]

        resolved, lines = await resolve(transcript, tools)

        part = resolved[1].tool_invocations[0]
        assert part.state == ToolInvocationState.CALL_RESULT
        assert part.result == {"title": "Lesson 3", "notes": "Verbos irregulares"}
        assert part.error is None
        assert executor.calls == [LessonInput(lesson=3)]
        assert len(lines) == 1
        assert lines[0].startswith('a:{"toolCallId":"call_1","toolName":"getLessonInfo","state":"call-result"')

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self):
        """Resolving an already resolved transcript changes nothing and emits nothing."""
        executor = RecordingExecutor(result="ok")
        tools = {"getLessonInfo": auto_tool("getLessonInfo", executor)}
        transcript = [assistant(invocation("call_1", "getLessonInfo"))]

        first, _ = await resolve(transcript, tools)
        second, lines = await resolve(first, tools)

        assert second == first
        assert lines == []
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_terminal_invocations_are_never_run_again(self):
        """Invocations that already have a result are left as they are."""
        executor = RecordingExecutor(result="new")
        tools = {"getLessonInfo": auto_tool("getLessonInfo", executor)}
        message = assistant(invocation("call_1", "getLessonInfo", ToolInvocationState.CALL_RESULT, result="old"))

        resolved, lines = await resolve([message], tools)

        assert resolved[0] is message
        assert executor.calls == []
        assert lines == []

    @pytest.mark.asyncio
    async def test_order_is_preserved(self):
        """Executions, status lines and parts all follow transcript order."""
        log: list[str] = []
        tools = {
            "first": auto_tool("first", RecordingExecutor(result=1, log=log, name="first")),
            "second": auto_tool("second", RecordingExecutor(result=2, log=log, name="second")),
        }
        transcript = [
            assistant("Looking this up", invocation("call_1", "first"), message_id="m1"),
            Message.text("user", "and the other one?"),
            assistant(invocation("call_2", "second"), message_id="m2"),
        ]

        resolved, lines = await resolve(transcript, tools)

        assert log == ["first", "second"]
        assert [message.id for message in resolved] == [message.id for message in transcript]
        assert resolved[0].text_content == "Looking this up"
        assert [part.type for part in resolved[0].parts] == ["text", "tool-invocation"]
        assert '"toolCallId":"call_1"' in lines[0]
        assert '"toolCallId":"call_2"' in lines[1]

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        """A failing executor does not stop the next invocation from running."""
        tools = {
            "broken": auto_tool("broken", RecordingExecutor(error=RuntimeError("notes unavailable"))),
            "working": auto_tool("working", RecordingExecutor(result="fine")),
        }
        transcript = [assistant(invocation("call_1", "broken"), invocation("call_2", "working"))]

        resolved, lines = await resolve(transcript, tools)

        broken, working = resolved[0].tool_invocations
        assert broken.state == ToolInvocationState.CALL_RESULT
        assert broken.error == "notes unavailable"
        assert working.result == "fine"
        assert '"isError":true' in lines[0]
        assert '"result":{"error":"notes unavailable"}' in lines[0]
        assert '"result":"fine"' in lines[1]

    @pytest.mark.asyncio
    async def test_unknown_tools_are_left_unchanged(self):
        """Invocations naming a tool outside the tool set pass through untouched."""
        part = invocation("call_1", "removedTool")
        transcript = [assistant(part)]

        resolved, lines = await resolve(transcript, {})

        assert resolved[0].tool_invocations[0] is part
        assert lines == []

    @pytest.mark.asyncio
    async def test_input_transcript_is_not_mutated(self):
        """The resolver returns new messages and leaves the input alone."""
        tools = {"getLessonInfo": auto_tool("getLessonInfo", RecordingExecutor(result="ok"))}
        message = assistant(invocation("call_1", "getLessonInfo"))
        transcript = [message]

        resolved, _ = await resolve(transcript, tools)

        assert transcript[0] is message
        assert message.tool_invocations[0].state == ToolInvocationState.CALL_PENDING
        assert resolved[0] is not message

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self):
        """An executor exceeding the timeout is reported as a failed tool."""

        async def slow(args):
            await asyncio.sleep(1)

        tools = {"slow": auto_tool("slow", slow)}
        resolved, lines = await resolve([assistant(invocation("call_1", "slow"))], tools, timeout_seconds=0.01)

        part = resolved[0].tool_invocations[0]
        assert part.state == ToolInvocationState.CALL_RESULT
        assert "timed out" in part.error
        assert '"isError":true' in lines[0]

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_failure(self):
        """Arguments that do not match the input schema never reach the executor."""
        executor = RecordingExecutor(result="unused")
        tools = {"getLessonInfo": auto_tool("getLessonInfo", executor, LessonInput)}

        resolved, _ = await resolve([assistant(invocation("call_1", "getLessonInfo", args={"lesson": "x"}))], tools)

        part = resolved[0].tool_invocations[0]
        assert part.error.startswith("Invalid arguments for tool getLessonInfo")
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_abort_stops_before_next_invocation(self):
        """Nothing runs once the abort event is set."""
        executor = RecordingExecutor(result="ok")
        tools = {"getLessonInfo": auto_tool("getLessonInfo", executor)}
        abort = asyncio.Event()
        abort.set()

        resolved, lines = await resolve([assistant(invocation("call_1", "getLessonInfo"))], tools, abort=abort)

        assert resolved[0].tool_invocations[0].state == ToolInvocationState.CALL_PENDING
        assert executor.calls == []
        assert lines == []


class TestConfirmationTools:
    """Tests for tools that wait for the user's decision."""

    @pytest.mark.asyncio
    async def test_awaiting_confirmation_scenario(self):
        """A confirmation call without a decision is left as the only open invocation."""
        executor = RecordingExecutor(result="deleted")
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            Message.text("user", "Delete my notes"),
            assistant(invocation("call_1", "deleteNotes", args={"lesson": 2})),
        ]

        resolved, lines = await resolve(transcript, tools, {"deleteNotes": executor})

        open_invocations = pending_invocations(resolved)
        assert len(open_invocations) == 1
        assert open_invocations[0].state == ToolInvocationState.CALL_AWAITING_CONFIRMATION
        assert executor.calls == []
        assert lines == []

    @pytest.mark.asyncio
    async def test_approved_invocation_runs_execution_entry(self):
        """An approval runs the implementation from the execution map."""
        executor = RecordingExecutor(result={"deleted": 2})
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            assistant(invocation("call_1", "deleteNotes", ToolInvocationState.CALL_AWAITING_CONFIRMATION)),
            decision("call_1", approved=True),
        ]

        resolved, lines = await resolve(transcript, tools, {"deleteNotes": executor})

        part = resolved[0].tool_invocations[0]
        assert part.state == ToolInvocationState.CALL_RESULT
        assert part.result == {"deleted": 2}
        assert len(executor.calls) == 1
        assert '"state":"call-result"' in lines[0]

    @pytest.mark.asyncio
    async def test_rejected_invocation_is_closed(self):
        """A rejection closes the invocation without running anything."""
        executor = RecordingExecutor(result="deleted")
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            assistant(invocation("call_1", "deleteNotes", ToolInvocationState.CALL_AWAITING_CONFIRMATION)),
            decision("call_1", approved=False, reason="Keep them"),
        ]

        resolved, lines = await resolve(transcript, tools, {"deleteNotes": executor})

        assert resolved[0].tool_invocations[0].state == ToolInvocationState.CALL_REJECTED
        assert executor.calls == []
        assert lines == [
            'a:{"toolCallId":"call_1","toolName":"deleteNotes","state":"call-rejected","result":"Keep them"}\n'
        ]

    @pytest.mark.asyncio
    async def test_rejection_without_reason_uses_default_message(self):
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            assistant(invocation("call_1", "deleteNotes", ToolInvocationState.CALL_AWAITING_CONFIRMATION)),
            decision("call_1", approved=False),
        ]

        _, lines = await resolve(transcript, tools, {"deleteNotes": RecordingExecutor()})

        assert '"result":"User denied access to tool execution"' in lines[0]

    @pytest.mark.asyncio
    async def test_first_later_decision_wins(self):
        """Decisions before the invocation are ignored; the first one after it applies."""
        executor = RecordingExecutor(result="deleted")
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            decision("call_1", approved=True),
            assistant(invocation("call_1", "deleteNotes", ToolInvocationState.CALL_AWAITING_CONFIRMATION)),
            decision("call_1", approved=False),
            decision("call_1", approved=True),
        ]

        resolved, _ = await resolve(transcript, tools, {"deleteNotes": executor})

        assert resolved[1].tool_invocations[0].state == ToolInvocationState.CALL_REJECTED
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_missing_execution_becomes_failure(self):
        """An approved call without an implementation fails instead of raising."""
        tools = {"deleteNotes": confirmation_tool("deleteNotes")}
        transcript = [
            assistant(invocation("call_1", "deleteNotes", ToolInvocationState.CALL_AWAITING_CONFIRMATION)),
            decision("call_1", approved=True),
        ]

        resolved, _ = await resolve(transcript, tools, {})

        assert resolved[0].tool_invocations[0].error == "No execution registered for tool deleteNotes"


class TestExecuteInvocation:
    """Tests for running a single invocation."""

    @pytest.mark.asyncio
    async def test_model_results_are_dumped(self):
        """Pydantic results are stored as plain JSON data."""

        class Summary(BaseModel):
            lesson: int
            words: list[str]

        async def summarize(args):
            return Summary(lesson=args.lesson, words=["olá", "obrigado"])

        tool = auto_tool("summarize", summarize, LessonInput)
        part = await execute_invocation(invocation("call_1", "summarize", args={"lesson": 1}), tool, summarize)

        assert part.result == {"lesson": 1, "words": ["olá", "obrigado"]}
