"""Transcript persistence interface and implementations."""

from typing import Protocol

from study_chat.models.messages import Message, Transcript


class TranscriptStore(Protocol):
    """Interface for transcript persistence.

    A transcript is always replaced wholesale; stores never patch messages.
    """

    async def load(self, session_id: str) -> Transcript:
        """Load the transcript for a session.

        Args:
            session_id: The session's unique identifier

        Returns:
            The stored messages, or an empty list for a new session
        """
        ...

    async def save(self, session_id: str, transcript: Transcript) -> None:
        """Replace the stored transcript for a session."""
        ...

    async def delete(self, session_id: str) -> None:
        """Remove the stored transcript for a session."""
        ...


class InMemoryTranscriptStore:
    """In-memory transcript store.

    Messages are kept as immutable snapshots; callers receive a fresh list on
    every load.
    """

    def __init__(self):
        self._transcripts: dict[str, tuple[Message, ...]] = {}

    async def load(self, session_id: str) -> Transcript:
        return list(self._transcripts.get(session_id, ()))

    async def save(self, session_id: str, transcript: Transcript) -> None:
        self._transcripts[session_id] = tuple(transcript)

    async def delete(self, session_id: str) -> None:
        self._transcripts.pop(session_id, None)
