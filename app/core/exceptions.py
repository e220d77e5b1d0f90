"""
Error types shared by the chat pipeline.

Tool level errors (QueryRejected, ToolError) are handed back to the model as
failed tool calls. Everything else ends the turn with an error event.
"""

from typing import Optional


class ChatServiceError(Exception):
    """Base class for errors raised by the chat pipeline."""


class QueryRejected(ChatServiceError):
    """The statement failed the read-only policy and was never executed."""

    def __init__(self, reason: str, keyword: Optional[str] = None):
        super().__init__(reason)
        self.keyword = keyword


class ToolError(ChatServiceError):
    """A tool ran but could not produce a result."""


class SessionStoreError(ChatServiceError):
    """The session store could not be read or written."""


class SessionDecodeError(SessionStoreError):
    """Persisted session data exists but cannot be decoded."""


class GenerationError(ChatServiceError):
    """The model stream failed or ended without a final response."""


class TurnCancelled(ChatServiceError):
    """The turn was cancelled (client went away or the deadline passed)."""
