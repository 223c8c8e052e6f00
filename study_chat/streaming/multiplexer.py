"""Single-producer output stream shared by tool resolution and the model stage.

``open_stream`` returns a sink and a channel over the same queue. Status
events emitted while tools resolve land in the queue first; ``merge`` then
forwards the model's events behind them and closes the channel when the
producer is exhausted or fails.
"""

import asyncio
from collections.abc import AsyncIterator

from study_chat.exceptions import StreamClosedError
from study_chat.models.stream import ErrorEvent, StreamEvent
from study_chat.streaming.protocol import encode_event
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

_END = object()


class _StreamState:
    def __init__(self, abort: asyncio.Event | None = None):
        self.queue: asyncio.Queue[str | object] = asyncio.Queue()
        self.abort = abort or asyncio.Event()
        self.closed = False
        self.error: BaseException | None = None


class EventSink:
    """Write side of a turn's output stream."""

    def __init__(self, state: _StreamState):
        self._state = state

    @property
    def closed(self) -> bool:
        return self._state.closed

    @property
    def error(self) -> BaseException | None:
        return self._state.error

    @property
    def abort_event(self) -> asyncio.Event:
        """Set when the consumer has gone away."""
        return self._state.abort

    def emit(self, event: StreamEvent) -> None:
        """Append one event to the stream.

        Raises:
            StreamClosedError: If the stream has already been closed
        """
        if self._state.closed:
            raise StreamClosedError(f"Cannot emit {event.type} after the stream was closed")
        self._state.queue.put_nowait(encode_event(event))

    def close(self, error: BaseException | None = None) -> None:
        """Close the stream, writing an error event first if one is given.

        Closing an already closed stream is a no-op.
        """
        if self._state.closed:
            return

        if error is not None:
            self._state.error = error
            self._state.queue.put_nowait(encode_event(ErrorEvent(message=str(error) or type(error).__name__)))

        self._state.closed = True
        self._state.queue.put_nowait(_END)


class OutputChannel:
    """Read side of a turn's output stream: an async iterator of encoded chunks."""

    def __init__(self, state: _StreamState):
        self._state = state
        self.task: asyncio.Task | None = None

    @property
    def error(self) -> BaseException | None:
        return self._state.error

    @property
    def closed(self) -> bool:
        return self._state.closed

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        finished = False
        try:
            while True:
                chunk = await self._state.queue.get()
                if chunk is _END:
                    finished = True
                    return
                yield chunk
        finally:
            if not finished:
                logger.info("Output channel consumer went away, signalling abort")
                self._state.abort.set()

    async def collect(self) -> list[str]:
        """Drain the channel into a list."""
        return [chunk async for chunk in self]


def open_stream(abort: asyncio.Event | None = None) -> tuple[EventSink, OutputChannel]:
    """Create a connected sink/channel pair."""
    state = _StreamState(abort)
    return EventSink(state), OutputChannel(state)


async def merge(producer: AsyncIterator[StreamEvent], sink: EventSink) -> None:
    """Forward every producer event to the sink, then close it.

    A failing producer closes the stream with an error event instead of
    propagating, so the consumer always sees the end of the turn.
    """
    try:
        async for event in producer:
            sink.emit(event)
    except Exception as e:
        logger.error(f"Stream producer failed: {e}", exc_info=True)
        sink.close(error=e)
    finally:
        sink.close()
