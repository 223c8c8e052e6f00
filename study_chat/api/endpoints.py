"""API endpoints for the study chat service."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from study_chat import __version__
from study_chat.exceptions import SessionBusyError, TranscriptError
from study_chat.models.conversation import ChatRequest, HealthResponse, ScheduledTaskRequest, TranscriptResponse
from study_chat.models.llm import TurnResult
from study_chat.services.chat_session import ChatSession
from study_chat.services.session_manager import ChatSessionManager, get_session_manager
from study_chat.streaming.protocol import DATA_STREAM_HEADERS, DATA_STREAM_MEDIA_TYPE
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

CHAT_AGENT = "chat"


def resolve_session(
    agent: str, name: str, manager: ChatSessionManager = Depends(get_session_manager)
) -> ChatSession:
    """Map an agent path onto a chat session."""
    if agent != CHAT_AGENT:
        logger.warning(f"Request for unknown agent: {agent}")
        raise HTTPException(status_code=404, detail="Not found")
    return manager.get_or_create_session(name)


@router.post("/agents/{agent}/{name}", tags=["Chat"])
async def handle_chat(request: ChatRequest, session: ChatSession = Depends(resolve_session)) -> StreamingResponse:
    """Append the client's messages and stream the resulting turn.

    The body carries only new messages: user text, tool decisions for
    invocations awaiting confirmation, or both.
    """

    async def on_finish(result: TurnResult) -> None:
        logger.info(
            f"Turn finished for session {session.session_id}: {result.finish_reason} "
            f"after {result.steps} steps, usage {result.usage.as_dict()}"
        )

    try:
        channel = await session.handle_turn(on_finish=on_finish, messages=request.messages)
    except SessionBusyError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=409, detail=str(e)) from e
    except TranscriptError as e:
        logger.warning(f"Rejected messages for session {session.session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    return StreamingResponse(channel, media_type=DATA_STREAM_MEDIA_TYPE, headers=DATA_STREAM_HEADERS)


@router.get("/agents/{agent}/{name}/get-messages", response_model=TranscriptResponse, tags=["Chat"])
async def get_messages(session: ChatSession = Depends(resolve_session)) -> TranscriptResponse:
    """Return the persisted transcript."""
    messages = await session.get_messages()
    return TranscriptResponse(session_id=session.session_id, messages=messages)


@router.delete("/agents/{agent}/{name}/messages", response_model=TranscriptResponse, tags=["Chat"])
async def clear_messages(session: ChatSession = Depends(resolve_session)) -> TranscriptResponse:
    """Drop the session's transcript.

    Rejected with 409 while a turn is streaming.
    """
    if session.busy:
        raise HTTPException(status_code=409, detail=f"Session {session.session_id} is already processing a turn")
    await session.clear()
    return TranscriptResponse(session_id=session.session_id, messages=[])


@router.post("/agents/{agent}/{name}/tasks", response_model=TranscriptResponse, tags=["Chat"])
async def run_task(request: ScheduledTaskRequest, session: ChatSession = Depends(resolve_session)) -> TranscriptResponse:
    """Record an externally scheduled task in the transcript.

    Waits for any running turn to finish rather than rejecting the task.
    """
    await session.run_scheduled_task(request.description)
    messages = await session.get_messages()
    return TranscriptResponse(session_id=session.session_id, messages=messages)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
