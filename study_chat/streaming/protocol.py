"""Wire encoding for the chat data stream.

Each event is one line of the form ``<code>:<json>\\n``, following the data
stream protocol spoken by the chat front end.
"""

import json
from typing import Any

from study_chat.models.messages import ToolInvocationState
from study_chat.models.stream import (
    AwaitingConfirmationEvent,
    ErrorEvent,
    StepFinishedEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolCompletedEvent,
    ToolFailedEvent,
    ToolRejectedEvent,
    TurnFinishedEvent,
)

DATA_STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

TEXT_CODE = "0"
DATA_CODE = "2"
ERROR_CODE = "3"
TOOL_CALL_CODE = "9"
TOOL_RESULT_CODE = "a"
FINISH_STEP_CODE = "e"
FINISH_MESSAGE_CODE = "d"

REJECTION_MESSAGE = "User denied access to tool execution"


def _line(code: str, payload: Any) -> str:
    return f"{code}:{json.dumps(payload, separators=(',', ':'), ensure_ascii=False, default=str)}\n"


def encode_event(event: StreamEvent) -> str:
    """Encode a stream event as a single protocol line."""
    if isinstance(event, TextDeltaEvent):
        return _line(TEXT_CODE, event.text)

    if isinstance(event, ToolCallEvent):
        return _line(
            TOOL_CALL_CODE,
            {"toolCallId": event.invocation_id, "toolName": event.tool_name, "args": event.args},
        )

    if isinstance(event, ToolCompletedEvent):
        return _line(
            TOOL_RESULT_CODE,
            {
                "toolCallId": event.invocation_id,
                "toolName": event.tool_name,
                "state": ToolInvocationState.CALL_RESULT.value,
                "result": event.result,
            },
        )

    if isinstance(event, ToolFailedEvent):
        return _line(
            TOOL_RESULT_CODE,
            {
                "toolCallId": event.invocation_id,
                "toolName": event.tool_name,
                "state": ToolInvocationState.CALL_RESULT.value,
                "result": {"error": event.error},
                "isError": True,
            },
        )

    if isinstance(event, ToolRejectedEvent):
        return _line(
            TOOL_RESULT_CODE,
            {
                "toolCallId": event.invocation_id,
                "toolName": event.tool_name,
                "state": ToolInvocationState.CALL_REJECTED.value,
                "result": event.reason or REJECTION_MESSAGE,
            },
        )

    if isinstance(event, AwaitingConfirmationEvent):
        return _line(
            DATA_CODE,
            [
                {
                    "type": event.type,
                    "toolCallId": event.invocation_id,
                    "toolName": event.tool_name,
                    "args": event.args,
                }
            ],
        )

    if isinstance(event, StepFinishedEvent):
        return _line(
            FINISH_STEP_CODE,
            {"finishReason": event.finish_reason, "usage": event.usage, "isContinued": event.is_continued},
        )

    if isinstance(event, TurnFinishedEvent):
        return _line(FINISH_MESSAGE_CODE, {"finishReason": event.finish_reason, "usage": event.usage})

    if isinstance(event, ErrorEvent):
        return _line(ERROR_CODE, event.message)

    raise TypeError(f"Unsupported stream event: {type(event).__name__}")
