"""Study chat: a streaming study assistant with human-in-the-loop tools."""

__version__ = "0.1.0"
