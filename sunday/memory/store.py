"""Storage contract consumed by the memory core.

Implemented by AsyncChatStore (PostgreSQL + optional Redis cache). The
contract states which operations must be atomic; implementations decide how.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence

from .schemas import ChatSession, Message, UserStatus


class ChatStore(Protocol):
    async def create_session(self, session: ChatSession) -> None:
        """Persist a new session document."""

    async def get_session(self, user_id: str, session_id: str) -> Optional[ChatSession]:
        """Load a session owned by the user, or None."""

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        """All sessions of a user, most recently active first."""

    async def deactivate_sessions(self, user_id: str, keep_session_id: str) -> int:
        """Mark every other session of the user inactive. Returns count changed."""

    async def set_session_title(self, user_id: str, session_id: str, title: str) -> None:
        """Set the session title."""

    async def append_message(self, message: Message) -> ChatSession:
        """Insert a message and atomically bump the session counters.

        Returns the updated session.
        """

    async def tail_messages(self, session_id: str, limit: int) -> list[Message]:
        """Last `limit` messages of a session, oldest first."""

    async def oldest_unsummarized(self, session_ids: Sequence[str], limit: int) -> list[Message]:
        """Up to `limit` unsummarized messages across sessions, oldest first."""

    async def delete_messages(self, session_id: str, message_ids: Sequence[str]) -> int:
        """Hard-delete exactly these messages and move counters.

        Decrements messages_retained and increments summarized_message_count by
        the number of rows actually deleted, in one transaction.
        """

    async def claim_batch(self, user_id: str, batch_key: str) -> bool:
        """Claim a compaction batch. False if already claimed."""

    async def batch_completed(self, user_id: str, batch_key: str) -> bool:
        """True if the batch's node was saved and only its deletion is pending."""

    async def release_batch(self, user_id: str, batch_key: str) -> None:
        """Drop a claim, after a failed fold or once its messages are deleted."""

    async def get_summary_document(self, user_id: str, doc_type: str) -> Optional[dict[str, Any]]:
        """Raw summary document (with its 'version'), or None."""

    async def save_summary_document(
        self,
        user_id: str,
        doc_type: str,
        data: dict[str, Any],
        expected_version: int,
        completes_batch: Optional[str] = None,
    ) -> int:
        """Overwrite a summary document if its version still matches.

        expected_version 0 means the document must not exist yet. When
        completes_batch is given, that claim is marked completed atomically
        with the write.
        Returns the new version; raises StorageConflict on mismatch.
        """

    async def get_user_status(self, user_id: str) -> UserStatus:
        """Current user status (defaults if absent)."""

    async def update_user_status(
        self, user_id: str, mutate: Callable[[UserStatus], UserStatus]
    ) -> UserStatus:
        """Transactional read-then-write of the user status.

        Exceptions raised by `mutate` abort the write and propagate.
        """

    async def record_memory_update(self, user_id: str, at: datetime) -> None:
        """Set the user's last memory update timestamp."""
