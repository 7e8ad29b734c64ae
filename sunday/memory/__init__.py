"""Bounded-context memory core for Sunday conversations."""

from .compressor import MemoryCompressor, evict_oldest
from .context import ContextBuilder, system_prompt
from .dispatcher import CompactionDispatcher
from .message_log import MessageLog
from .quota import ConversationQuotaGovernor, QuotaStatus
from .registry import SessionRegistry, title_from_first_message
from .schemas import (
    ChatSession,
    ConversationContext,
    MemoryNode,
    MemorySummary,
    Message,
    TurnResult,
    UserStatus,
)
from .store import ChatStore

__all__ = [
    "ChatSession",
    "ChatStore",
    "CompactionDispatcher",
    "ContextBuilder",
    "ConversationContext",
    "ConversationQuotaGovernor",
    "MemoryCompressor",
    "MemoryNode",
    "MemorySummary",
    "Message",
    "MessageLog",
    "QuotaStatus",
    "SessionRegistry",
    "TurnResult",
    "UserStatus",
    "evict_oldest",
    "system_prompt",
    "title_from_first_message",
]
