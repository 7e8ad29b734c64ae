"""Pydantic schemas for session-related API endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class MessageSchema(BaseModel):
    """Schema for a single retained chat message."""

    id: str = Field(..., description="Message ID")
    role: str = Field(..., description="Message role: 'user' or 'assistant'")
    content: str = Field(..., description="Message content")
    timestamp: datetime = Field(..., description="When the message was stored")


class SessionResponse(BaseModel):
    """Schema for session metadata and counters."""

    id: str = Field(..., description="Session ID")
    title: Optional[str] = Field(None, description="Session title")
    started_at: datetime
    last_message_at: datetime
    total_messages: int
    messages_retained: int = Field(..., description="Raw messages still stored")
    summarized_message_count: int = Field(..., description="Messages folded into memory")
    is_active: bool


class SessionDetailResponse(SessionResponse):
    """Schema for a session with its retained messages."""

    messages: List[MessageSchema] = Field(default_factory=list, description="Retained messages, oldest first")


class CompactionResponse(BaseModel):
    """Schema for a forced compaction request."""

    session_id: str
    dispatched: bool
