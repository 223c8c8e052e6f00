"""Output stream for chat turns."""

from study_chat.streaming.multiplexer import EventSink, OutputChannel, merge, open_stream
from study_chat.streaming.protocol import DATA_STREAM_HEADERS, DATA_STREAM_MEDIA_TYPE, encode_event

__all__ = [
    "DATA_STREAM_HEADERS",
    "DATA_STREAM_MEDIA_TYPE",
    "EventSink",
    "OutputChannel",
    "encode_event",
    "merge",
    "open_stream",
]
