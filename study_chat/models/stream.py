"""Events written to a turn's output stream."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class TextDeltaEvent(BaseModel):
    """An incremental piece of model text."""

    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolCallEvent(BaseModel):
    """The model requested a tool invocation."""

    type: Literal["tool-call"] = "tool-call"
    invocation_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolCompletedEvent(BaseModel):
    type: Literal["tool-completed"] = "tool-completed"
    invocation_id: str
    tool_name: str
    result: Any = None


class ToolFailedEvent(BaseModel):
    type: Literal["tool-failed"] = "tool-failed"
    invocation_id: str
    tool_name: str
    error: str


class ToolRejectedEvent(BaseModel):
    type: Literal["tool-rejected"] = "tool-rejected"
    invocation_id: str
    tool_name: str
    reason: str | None = None


class AwaitingConfirmationEvent(BaseModel):
    """An invocation needs the user's approval before it can run."""

    type: Literal["awaiting-confirmation"] = "awaiting-confirmation"
    invocation_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class StepFinishedEvent(BaseModel):
    type: Literal["step-finished"] = "step-finished"
    finish_reason: str
    usage: dict[str, int] = Field(default_factory=dict)
    is_continued: bool = False


class TurnFinishedEvent(BaseModel):
    type: Literal["turn-finished"] = "turn-finished"
    finish_reason: str
    usage: dict[str, int] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StatusEvent = ToolCompletedEvent | ToolFailedEvent | ToolRejectedEvent

StreamEvent = (
    TextDeltaEvent
    | ToolCallEvent
    | ToolCompletedEvent
    | ToolFailedEvent
    | ToolRejectedEvent
    | AwaitingConfirmationEvent
    | StepFinishedEvent
    | TurnFinishedEvent
    | ErrorEvent
)
