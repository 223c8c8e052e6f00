"""Chat session: owns a transcript and runs resolve-then-stream turns."""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from study_chat.exceptions import SessionBusyError, TranscriptError
from study_chat.models.llm import TurnResult
from study_chat.models.messages import Message, ToolInvocationPart, ToolInvocationState, Transcript
from study_chat.models.stream import AwaitingConfirmationEvent, StreamEvent, TurnFinishedEvent
from study_chat.prompts import get_system_prompt
from study_chat.services.llm import DEFAULT_MAX_STEPS, LLMService, ModelTurn
from study_chat.services.tool_resolver import DEFAULT_TOOL_TIMEOUT_SECONDS, ConfirmationResolver
from study_chat.services.transcript_store import TranscriptStore
from study_chat.streaming.multiplexer import EventSink, OutputChannel, merge, open_stream
from study_chat.tools.base import ExecutionMap, ToolProvider
from study_chat.tools.registry import ToolsRegistry, validate_executions
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

OnFinish = Callable[[TurnResult], Awaitable[None] | None]


@dataclass
class TurnOptions:
    """Per-session limits applied to every turn."""

    max_steps: int = DEFAULT_MAX_STEPS
    tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS
    system_prompt: Callable[[], str] = field(default=get_system_prompt)


class ChatSession:
    """A single chat conversation.

    The session is the unit of mutual exclusion: one turn, scheduled task or
    transcript change runs at a time. A turn started while another is in
    flight is rejected with ``SessionBusyError``.
    """

    def __init__(
        self,
        session_id: str,
        store: TranscriptStore,
        tools_registry: ToolsRegistry,
        llm_service: LLMService,
        executions: ExecutionMap | None = None,
        tool_provider: ToolProvider | None = None,
        options: TurnOptions | None = None,
    ):
        self.session_id = session_id
        self.store = store
        self.tools_registry = tools_registry
        self.llm_service = llm_service
        self.executions: ExecutionMap = executions or {}
        self.tool_provider = tool_provider or ToolProvider()
        self.options = options or TurnOptions()
        self.resolver = ConfirmationResolver(timeout_seconds=self.options.tool_timeout_seconds)

        self.created_at = datetime.now(UTC)
        self.last_activity = self.created_at

        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    async def get_messages(self) -> Transcript:
        return await self.store.load(self.session_id)

    async def append_messages(self, messages: list[Message]) -> Transcript:
        """Append client messages to the transcript.

        Raises:
            TranscriptError: If a message id is already used or a message carries a tool invocation
        """
        async with self._lock:
            return await self._append(messages)

    async def clear(self) -> None:
        """Drop the whole transcript."""
        async with self._lock:
            await self.store.delete(self.session_id)
            logger.info(f"Cleared transcript for session {self.session_id}")

    async def run_scheduled_task(self, description: str) -> Message:
        """Record an externally triggered task as a user message, without a model call."""
        async with self._lock:
            transcript = await self.store.load(self.session_id)
            message = Message.text("user", f"Running scheduled task: {description}")
            await self.store.save(self.session_id, [*transcript, message])
            self.update_activity()

        logger.info(f"Recorded scheduled task for session {self.session_id}: {description}")
        return message

    async def handle_turn(
        self,
        on_finish: OnFinish | None = None,
        abort: asyncio.Event | None = None,
        messages: list[Message] | None = None,
    ) -> OutputChannel:
        """Start a turn and return its output channel.

        Args:
            on_finish: Called with the finished turn before the transcript is persisted
            abort: Stops the turn early when set; also set when the channel's consumer goes away
            messages: New client messages to append before the turn starts

        Raises:
            SessionBusyError: If a turn is already running for this session
            TranscriptError: If the new messages cannot be appended
        """
        if self._lock.locked():
            raise SessionBusyError(f"Session {self.session_id} is already processing a turn")

        await self._lock.acquire()
        try:
            if messages:
                await self._append(messages)

            sink, channel = open_stream(abort)
            task = asyncio.create_task(self._run_turn(sink, on_finish))
        except BaseException:
            self._lock.release()
            raise

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        channel.task = task
        self.update_activity()
        return channel

    async def _append(self, messages: list[Message]) -> Transcript:
        transcript = await self.store.load(self.session_id)
        known_ids = {message.id for message in transcript}

        for message in messages:
            if message.id in known_ids:
                raise TranscriptError(f"Message {message.id} is already in the transcript")
            if any(isinstance(part, ToolInvocationPart) for part in message.parts):
                raise TranscriptError(f"Message {message.id} may not carry tool invocations")
            known_ids.add(message.id)

        updated = [*transcript, *messages]
        await self.store.save(self.session_id, updated)
        return updated

    async def _run_turn(self, sink: EventSink, on_finish: OnFinish | None) -> None:
        abort = sink.abort_event
        try:
            logger.info(f"Starting turn for session {self.session_id}")
            transcript = await self.store.load(self.session_id)

            dynamic_tools = await self.tool_provider.list_tools()
            tools = self.tools_registry.merged_with(dynamic_tools)
            validate_executions(tools, self.executions)

            resolved = await self.resolver.resolve(transcript, tools, self.executions, sink, abort)
            await self.store.save(self.session_id, resolved)

            if abort.is_set():
                sink.emit(TurnFinishedEvent(finish_reason="aborted"))
                return

            # Invocations of unknown tools can never be decided; the model stage rejects them
            awaiting = [
                part
                for message in resolved
                for part in message.tool_invocations
                if part.state == ToolInvocationState.CALL_AWAITING_CONFIRMATION and part.tool_name in tools
            ]
            if awaiting:
                logger.info(f"Session {self.session_id} is waiting on {len(awaiting)} confirmations")
                for part in awaiting:
                    sink.emit(
                        AwaitingConfirmationEvent(
                            invocation_id=part.invocation_id, tool_name=part.tool_name, args=part.args
                        )
                    )
                sink.emit(TurnFinishedEvent(finish_reason="awaiting-confirmation"))
                return

            turn = self.llm_service.start_turn(
                resolved,
                system_prompt=self.options.system_prompt(),
                tools=tools,
                max_steps=self.options.max_steps,
                tool_timeout_seconds=self.options.tool_timeout_seconds,
                abort=abort,
            )
            await merge(self._model_events(turn, resolved, on_finish), sink)

            if sink.error is not None:
                logger.warning(f"Turn for session {self.session_id} ended with error: {sink.error}")

        except Exception as e:
            logger.error(f"Turn failed for session {self.session_id}: {e}", exc_info=True)
            sink.close(error=e)
        finally:
            sink.close()
            self.update_activity()
            self._lock.release()

    async def _model_events(
        self, turn: ModelTurn, resolved: Transcript, on_finish: OnFinish | None
    ) -> AsyncIterator[StreamEvent]:
        async for event in turn.events():
            yield event

        result = turn.result
        if result is None:
            return

        if on_finish is not None:
            outcome = on_finish(result)
            if inspect.isawaitable(outcome):
                await outcome

        if result.message.parts:
            await self.store.save(self.session_id, [*resolved, result.message])
