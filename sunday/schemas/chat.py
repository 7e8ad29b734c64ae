"""Pydantic schemas for the chat turn endpoint."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    """Schema for sending a message to Sunday."""

    message: str = Field(..., min_length=1, description="User message content")
    session_id: Optional[str] = Field(None, description="Session to continue; omit to start a new one")

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: str) -> str:
        """Strip whitespace before validation."""
        return v.strip() if isinstance(v, str) else v


class ChatResponse(BaseModel):
    """Schema for Sunday's reply."""

    reply_text: str = Field(..., description="Assistant reply")
    session_id: str = Field(..., description="Session the turn belongs to")
