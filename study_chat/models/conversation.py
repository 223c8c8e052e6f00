"""Request and response models for the HTTP API."""

from datetime import datetime

from pydantic import BaseModel, Field

from study_chat.models.messages import Message


class ChatRequest(BaseModel):
    """Request model for a chat turn.

    Carries only the messages new to the transcript: a user message, tool
    decisions for invocations awaiting confirmation, or both.
    """

    messages: list[Message] = Field(default_factory=list)


class ScheduledTaskRequest(BaseModel):
    """Request model for an externally triggered task."""

    description: str = Field(..., min_length=1)


class TranscriptResponse(BaseModel):
    """Response model for transcript reads and writes."""

    session_id: str
    messages: list[Message]


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
