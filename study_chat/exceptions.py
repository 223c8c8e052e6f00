"""Exceptions raised by the chat service."""


class StudyChatError(Exception):
    """Base class for all service errors."""


class ConfigurationError(StudyChatError):
    """The tool catalogue or execution map is inconsistent."""


class ToolNameCollisionError(ConfigurationError):
    """A dynamically supplied tool shares a name with a local one."""

    def __init__(self, names: list[str]):
        self.names = sorted(names)
        super().__init__(f"Tool name collision: {', '.join(self.names)}")


class MissingExecutionError(ConfigurationError):
    """A tool requiring confirmation has no entry in the execution map."""

    def __init__(self, names: list[str]):
        self.names = sorted(names)
        super().__init__(f"No execution registered for confirmation tools: {', '.join(self.names)}")


class UnresolvedToolInvocationError(StudyChatError):
    """A non-terminal tool invocation reached the model stage."""

    def __init__(self, invocation_id: str, tool_name: str, state: str):
        self.invocation_id = invocation_id
        self.tool_name = tool_name
        self.state = state
        super().__init__(f"Tool invocation {invocation_id} ({tool_name}) is unresolved: {state}")


class TranscriptError(StudyChatError):
    """Messages cannot be appended to the transcript."""


class SessionBusyError(StudyChatError):
    """The session is already processing a turn."""


class StreamClosedError(StudyChatError):
    """An event was emitted after the output stream was closed."""
