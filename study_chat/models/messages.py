"""Transcript data models: messages, parts and tool invocation states."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field

generate_id = cuid_wrapper()

MessageRole = Literal["user", "assistant", "system", "tool"]


class ToolInvocationState(StrEnum):
    """Lifecycle of a tool invocation embedded in a message."""

    CALL_PENDING = "call-pending"
    CALL_AWAITING_CONFIRMATION = "call-awaiting-confirmation"
    CALL_APPROVED = "call-approved"
    CALL_REJECTED = "call-rejected"
    CALL_RESULT = "call-result"


TERMINAL_STATES = frozenset({ToolInvocationState.CALL_REJECTED, ToolInvocationState.CALL_RESULT})


class TextPart(BaseModel):
    """Literal text."""

    type: Literal["text"] = "text"
    text: str


class ToolInvocationPart(BaseModel):
    """A request for a named tool to run with the given arguments."""

    type: Literal["tool-invocation"] = "tool-invocation"
    invocation_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: ToolInvocationState
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the invocation will not change state again."""
        return self.state in TERMINAL_STATES


class ToolDecisionPart(BaseModel):
    """The user's answer to an invocation awaiting confirmation.

    Decisions are appended by the client in a later message and refer to the
    invocation by id; the invocation itself is never edited by the client.
    """

    type: Literal["tool-decision"] = "tool-decision"
    invocation_id: str
    approved: bool
    reason: str | None = None


Part = Annotated[TextPart | ToolInvocationPart | ToolDecisionPart, Field(discriminator="type")]


class Message(BaseModel):
    """A message in a chat transcript."""

    id: str = Field(default_factory=generate_id)
    role: MessageRole
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    parts: list[Part] = Field(default_factory=list)

    @classmethod
    def text(cls, role: MessageRole, text: str) -> "Message":
        """Build a message holding a single text part."""
        return cls(role=role, parts=[TextPart(text=text)])

    @property
    def text_content(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_invocations(self) -> list[ToolInvocationPart]:
        return [part for part in self.parts if isinstance(part, ToolInvocationPart)]


Transcript = list[Message]


def pending_invocations(transcript: Transcript) -> list[ToolInvocationPart]:
    """All non-terminal tool invocations, in transcript order."""
    return [part for message in transcript for part in message.tool_invocations if not part.is_terminal]
