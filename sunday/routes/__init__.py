"""FastAPI route modules."""

from . import chat, memory, sessions, user

__all__ = ["chat", "memory", "sessions", "user"]
