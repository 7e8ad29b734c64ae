"""Domain errors raised by the memory/compaction core."""

from datetime import datetime
from typing import Optional


class SundayError(Exception):
    """Base class for all Sunday domain errors."""


class QuotaExceeded(SundayError):
    """Raised when creating a new session would exceed a conversation cap.

    Continuing an existing session never raises this.
    """

    def __init__(self, reason: str, limit: int, reset_at: Optional[datetime] = None):
        self.reason = reason  # 'lifetime' | 'window'
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(f"Conversation limit reached ({reason} cap of {limit})")


class SessionNotFound(SundayError):
    """Raised when a referenced session does not exist for the user."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SummarizationUnavailable(SundayError):
    """External summarization capability failed, timed out or returned nothing."""


class MalformedSynthesisOutput(SundayError):
    """Structured rollup output could not be parsed."""


class StorageConflict(SundayError):
    """Concurrent write to the same document was detected."""


class InvalidMessage(SundayError):
    """The user message is empty once sanitized."""
