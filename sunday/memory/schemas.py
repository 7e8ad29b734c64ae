"""Memory core schemas.

Every document read from storage is normalized here, once, into a fully
defaulted model. Callers never fill defaults at read sites.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from sunday.tokens import estimate_tokens

Role = Literal["user", "assistant"]

# Summary document identifiers (one document of each type per user)
PROFILE_SUMMARY = "profile_summary"
RECENT_JOURNAL_SUMMARY = "recent_journal_summary"
HABIT_TASK_SUMMARY = "habit_task_summary"
MEMORY_SUMMARY = "sunday_memory_summary"

FIRST_CONVERSATION_SUMMARY = "First conversation with this user. No previous therapeutic history."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSession(BaseModel):
    """Metadata and counters of one conversation with Sunday."""

    id: str
    user_id: str
    title: Optional[str] = None
    started_at: datetime
    last_message_at: datetime
    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    messages_retained: int = 0  # Raw messages still stored
    summarized_message_count: int = 0  # Messages folded into memory nodes
    last_summarized_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls, session_id: str, user_id: str, now: Optional[datetime] = None) -> "ChatSession":
        now = now or utcnow()
        return cls(
            id=session_id,
            user_id=user_id,
            started_at=now,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )


class Message(BaseModel):
    """A single raw chat message. Deleted once folded into a memory node."""

    id: str
    session_id: str
    user_id: str
    role: Role
    content: str
    timestamp: datetime
    token_count: int = 0
    is_summarized: bool = False


class MemoryNode(BaseModel):
    """Condensed synthesis of one batch of raw messages."""

    id: str
    theme: str
    created_from: list[str] = Field(default_factory=list, description="Contributing session ids")
    summary: str
    timestamp: datetime


class MemorySummary(BaseModel):
    """Long-term memory singleton of all Sunday conversations of a user."""

    user_id: str
    summary: str = FIRST_CONVERSATION_SUMMARY
    memory_nodes: list[MemoryNode] = Field(default_factory=list)
    effective_techniques: list[str] = Field(default_factory=list)
    user_preferences: list[str] = Field(default_factory=list)
    trigger_patterns: list[str] = Field(default_factory=list)
    progress_areas: list[str] = Field(default_factory=list)
    conversations_included: int = 0
    last_conversation_date: Optional[datetime] = None
    generated_at: Optional[datetime] = None
    token_count: int = 0
    version: int = 0  # Stored document version, 0 = not stored yet

    @classmethod
    def initial(cls, user_id: str, now: Optional[datetime] = None) -> "MemorySummary":
        now = now or utcnow()
        return cls(
            user_id=user_id,
            last_conversation_date=now,
            generated_at=now,
            token_count=estimate_tokens(FIRST_CONVERSATION_SUMMARY),
        )

    @classmethod
    def from_document(cls, user_id: str, document: Optional[dict[str, Any]]) -> "MemorySummary":
        """Normalize a stored document (or its absence) into a MemorySummary."""
        if not document:
            return cls(user_id=user_id)
        data = {k: v for k, v in document.items() if v is not None}
        data["user_id"] = user_id
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage (version is tracked by the store)."""
        return self.model_dump(mode="json", exclude={"version"})


class SummaryDocument(BaseModel):
    """Read-only summary produced by another pipeline (profile, journal, habits)."""

    model_config = {"extra": "ignore"}

    summary: str = ""
    generated_at: Optional[datetime] = None
    token_count: int = 0

    @classmethod
    def from_document(cls, document: Optional[dict[str, Any]]) -> Optional["SummaryDocument"]:
        if not document:
            return None
        parsed = cls.model_validate({k: v for k, v in document.items() if v is not None})
        return parsed if parsed.summary.strip() else None


class RollupResult(BaseModel):
    """Structured output of the rollup synthesis call."""

    model_config = {"populate_by_name": True}

    summary: Optional[str] = None
    effective_techniques: Optional[list[str]] = Field(default=None, alias="effectiveTechniques")
    user_preferences: Optional[list[str]] = Field(default=None, alias="userPreferences")
    trigger_patterns: Optional[list[str]] = Field(default=None, alias="triggerPatterns")
    progress_areas: Optional[list[str]] = Field(default=None, alias="progressAreas")


class UserStatus(BaseModel):
    """Per-user bookkeeping for quota and memory status."""

    user_id: str
    sessions_created: int = 0  # Lifetime new-session counter
    window_sessions: int = 0  # New sessions inside the current window
    window_reset_at: Optional[datetime] = None
    last_memory_update: Optional[datetime] = None


class ConversationContext(BaseModel):
    """Per-turn context assembled for the completion call."""

    prompt: str
    history: list[dict[str, str]] = Field(default_factory=list)
    context_tokens: int = 0
    history_tokens: int = 0
    missing_sources: list[str] = Field(default_factory=list)


class TurnResult(BaseModel):
    """Outcome of one chat turn."""

    reply_text: str
    session_id: str
