"""Session management for chat sessions."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from study_chat.config import Settings, get_settings
from study_chat.services.chat_session import ChatSession, TurnOptions
from study_chat.services.llm import LLMService, get_llm_service
from study_chat.services.transcript_store import InMemoryTranscriptStore, TranscriptStore
from study_chat.tools.base import ExecutionMap, ToolProvider
from study_chat.tools.registry import ToolsRegistry
from study_chat.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class ChatSessionManager:
    """Keeps live chat sessions keyed by name.

    Transcripts live in the store and outlive the session objects: an expired
    session is rebuilt from its stored transcript the next time it is used.
    """

    def __init__(
        self,
        store: TranscriptStore | None = None,
        tools_registry: ToolsRegistry | None = None,
        executions: ExecutionMap | None = None,
        tool_provider: ToolProvider | None = None,
        llm_service: LLMService | None = None,
        settings: Settings | None = None,
        system_prompt: Callable[[], str] | None = None,
    ):
        """Initialize session manager.

        Args:
            store: Transcript persistence shared by all sessions
            tools_registry: Local tool catalogue
            executions: Implementations for tools that require confirmation
            tool_provider: Source of dynamic tools discovered per turn
            llm_service: Model service, defaults to the global instance on first use
            settings: Service settings, defaults to the environment
            system_prompt: Builds the system prompt for each turn
        """
        self.settings = settings or get_settings()
        self.store = store or InMemoryTranscriptStore()
        self.tools_registry = tools_registry or ToolsRegistry()
        self.executions: ExecutionMap = executions or {}
        self.tool_provider = tool_provider or ToolProvider()
        self._llm_service = llm_service
        self.options = TurnOptions(
            max_steps=self.settings.max_steps,
            tool_timeout_seconds=self.settings.tool_timeout_seconds,
        )
        if system_prompt is not None:
            self.options.system_prompt = system_prompt

        self.sessions: dict[str, ChatSession] = {}
        self.session_timeout = timedelta(minutes=self.settings.session_timeout_minutes)

    @property
    def llm_service(self) -> LLMService:
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    def get_or_create_session(self, session_id: str | None = None) -> ChatSession:
        """Get existing session or create new one.

        Args:
            session_id: Optional session name; a new id is generated when omitted

        Returns:
            ChatSession object (existing or newly created)
        """
        self._cleanup_expired_sessions()

        if session_id and session_id in self.sessions:
            session = self.sessions[session_id]
            session.update_activity()
            return session

        new_session_id = session_id or self._generate_session_id()
        session = ChatSession(
            session_id=new_session_id,
            store=self.store,
            tools_registry=self.tools_registry,
            llm_service=self.llm_service,
            executions=self.executions,
            tool_provider=self.tool_provider,
            options=self.options,
        )
        self.sessions[new_session_id] = session
        logger.info(f"Created session {new_session_id}")
        return session

    def get_session(self, session_id: str) -> ChatSession | None:
        """Get a live session by ID, or None if it is not loaded."""
        self._cleanup_expired_sessions()

        session = self.sessions.get(session_id)
        if session:
            session.update_activity()
        return session

    def delete_session(self, session_id: str) -> bool:
        """Drop a live session. Its stored transcript is kept.

        Returns:
            True if session was deleted, False if not found
        """
        if session_id in self.sessions:
            del self.sessions[session_id]
            return True
        return False

    def _generate_session_id(self) -> str:
        """Generate a new CUID-based session ID."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove idle sessions from memory; busy sessions are never evicted."""
        current_time = datetime.now(UTC)
        expired_sessions = [
            session_id
            for session_id, session in self.sessions.items()
            if not session.busy and current_time - session.last_activity > self.session_timeout
        ]

        for session_id in expired_sessions:
            del self.sessions[session_id]

        if expired_sessions:
            logger.debug(f"Evicted {len(expired_sessions)} idle sessions")

    def get_session_count(self) -> int:
        """Get current number of live sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)


_session_manager: ChatSessionManager | None = None


def get_session_manager() -> ChatSessionManager:
    """Get or create the session manager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = ChatSessionManager()
    return _session_manager
