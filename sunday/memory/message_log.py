"""Append-only per-session message log."""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sunday.tokens import estimate_tokens

from .schemas import ChatSession, Message, utcnow
from .store import ChatStore

logger = logging.getLogger(__name__)


class MessageLog:
    """Ordered raw message store with per-session counters.

    Messages carry is_summarized=False until compaction deletes them.
    """

    def __init__(self, store: ChatStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    async def append(
        self, session: ChatSession, role: str, content: str
    ) -> tuple[Message, ChatSession]:
        """Persist a new message and bump the session counters atomically.

        Args:
            session: Owning session
            role: 'user' or 'assistant'
            content: Message text

        Returns:
            Tuple of (stored message, updated session)

        Raises:
            ValueError: If role is not 'user' or 'assistant'
        """
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role}")

        message = Message(
            id=uuid.uuid4().hex,
            session_id=session.id,
            user_id=session.user_id,
            role=role,
            content=content,
            timestamp=self.clock(),
            token_count=estimate_tokens(content),
            is_summarized=False,
        )
        updated = await self.store.append_message(message)
        logger.debug(
            f"Appended {role} message to session {session.id} "
            f"(total={updated.total_messages}, retained={updated.messages_retained})"
        )
        return message, updated

    async def tail(self, session: ChatSession, n: int) -> list[Message]:
        """Last n messages of the session, oldest first."""
        if n <= 0:
            return []
        return await self.store.tail_messages(session.id, n)

    async def oldest_unsummarized(self, session: ChatSession, batch_size: int) -> list[Message]:
        """Up to batch_size unsummarized messages, oldest first. Empty if none."""
        return await self.store.oldest_unsummarized([session.id], batch_size)
