"""Pydantic schemas for API requests and responses."""

from .chat import ChatRequest, ChatResponse
from .session import CompactionResponse, MessageSchema, SessionDetailResponse, SessionResponse
from .user import UserInfo

__all__ = [
    # Chat schemas
    "ChatRequest",
    "ChatResponse",
    # Session schemas
    "MessageSchema",
    "SessionResponse",
    "SessionDetailResponse",
    "CompactionResponse",
    # User schemas
    "UserInfo",
]
