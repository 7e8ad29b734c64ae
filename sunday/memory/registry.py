"""Session registry: the single entry point for a Sunday chat turn."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from sunday.errors import InvalidMessage, SessionNotFound
from sunday.llm.prompts import FALLBACK_REPLY
from sunday.tokens import estimate_tokens, sanitize_input

from .compressor import MemoryCompressor
from .context import ContextBuilder, system_prompt
from .dispatcher import CompactionDispatcher
from .message_log import MessageLog
from .quota import ConversationQuotaGovernor
from .schemas import ChatSession, TurnResult, utcnow
from .store import ChatStore

if TYPE_CHECKING:
    from sunday.llm.client import SundayLLM

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


def title_from_first_message(msg: str) -> str:
    """Derive a single-line session title from the user's first message.

    Args:
        msg: The user's message

    Returns:
        The first 50 characters, with "..." appended if the message was longer
    """
    trimmed = (msg or "").strip().replace("\n", " ")
    if not trimmed:
        return "New conversation"
    return trimmed[:TITLE_MAX_CHARS] + ("..." if len(trimmed) > TITLE_MAX_CHARS else "")


class SessionRegistry:
    """Creates and loads sessions, appends turns and triggers compaction.

    Quota is consulted only when a new session is created. Memory work
    (initialization, sweeps, compaction) never blocks or fails a turn.
    """

    def __init__(
        self,
        store: ChatStore,
        llm: "SundayLLM",
        message_log: MessageLog,
        context_builder: ContextBuilder,
        compressor: MemoryCompressor,
        quota: ConversationQuotaGovernor,
        dispatcher: CompactionDispatcher,
        trigger_threshold: int = 20,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.llm = llm
        self.message_log = message_log
        self.context_builder = context_builder
        self.compressor = compressor
        self.quota = quota
        self.dispatcher = dispatcher
        self.trigger_threshold = trigger_threshold
        self.clock = clock or utcnow

    @classmethod
    def from_settings(
        cls,
        store: ChatStore,
        llm: "SundayLLM",
        dispatcher: CompactionDispatcher,
        settings,
    ) -> "SessionRegistry":
        """Wire every memory component from application settings."""
        message_log = MessageLog(store)
        return cls(
            store=store,
            llm=llm,
            message_log=message_log,
            context_builder=ContextBuilder(store, message_log, keep_recent=settings.keep_recent),
            compressor=MemoryCompressor.from_settings(store, llm, settings),
            quota=ConversationQuotaGovernor.from_settings(store, settings),
            dispatcher=dispatcher,
            trigger_threshold=settings.trigger_threshold,
        )

    async def handle_turn(
        self, user_id: str, session_id: Optional[str], message: str
    ) -> TurnResult:
        """Run one chat turn.

        Args:
            user_id: Current user
            session_id: Existing session to continue, or None to start a new one
            message: Raw user message

        Returns:
            TurnResult with the reply and the session it belongs to

        Raises:
            InvalidMessage: If the message is empty after sanitizing
            QuotaExceeded: If a new session would exceed the conversation cap
            SessionNotFound: If session_id does not belong to the user
        """
        text = sanitize_input(message or "")
        if not text:
            raise InvalidMessage("Message is required and must be a non-empty string")

        session, is_new = await self.get_or_create_session(user_id, session_id)

        context = await self.context_builder.build(user_id, session)
        reply = await self.llm.complete(system_prompt(context), context.history, text)
        if not reply:
            logger.warning(f"Empty completion for session {session.id}, using fallback reply")
            reply = FALLBACK_REPLY
        logger.info(f"Generated reply for session {session.id} (~{estimate_tokens(reply)} tokens)")

        session = await self.append_turn(session, text, reply, is_new=is_new)
        await self.maybe_trigger_compaction(user_id, session.id, session=session)

        return TurnResult(reply_text=reply, session_id=session.id)

    async def get_or_create_session(
        self, user_id: str, session_id: Optional[str] = None
    ) -> tuple[ChatSession, bool]:
        """Load an existing session or create a new one.

        Creating a session consumes one quota slot. The user's first session
        initializes long-term memory; later ones sweep stranded messages of
        the previous sessions in the background.

        Returns:
            Tuple of (session, created)
        """
        if session_id:
            session = await self.store.get_session(user_id, session_id)
            if session is None:
                raise SessionNotFound(session_id)
            return session, False

        status = await self.quota.consume(user_id)

        session = ChatSession.new(uuid.uuid4().hex, user_id, self.clock())
        await self.store.create_session(session)
        logger.info(f"Created session {session.id} for user {user_id} (#{status.sessions_created})")

        if status.sessions_created <= 1:
            try:
                await self.compressor.initialize_memory(user_id)
            except Exception as e:
                logger.error(f"Failed to initialize memory for user {user_id}: {e}")
        else:
            current_id = session.id
            self.dispatcher.dispatch(
                user_id,
                "previous-session-sweep",
                lambda: self.compressor.compact_previous_sessions(user_id, current_id),
            )

        return session, True

    async def append_turn(
        self,
        session: ChatSession,
        user_message: str,
        reply: str,
        is_new: bool = False,
    ) -> ChatSession:
        """Persist the user message and the reply, titling new sessions.

        Returns:
            Session with updated counters
        """
        _, session = await self.message_log.append(session, "user", user_message)
        _, session = await self.message_log.append(session, "assistant", reply)

        if is_new or not session.title:
            title = title_from_first_message(user_message)
            await self.store.set_session_title(session.user_id, session.id, title)
            session = session.model_copy(update={"title": title})

        return session

    async def maybe_trigger_compaction(
        self,
        user_id: str,
        session_id: str,
        force: bool = False,
        session: Optional[ChatSession] = None,
    ) -> bool:
        """Dispatch a background compaction if the session crossed the threshold.

        Args:
            user_id: Session owner
            session_id: Session to check
            force: Dispatch regardless of the threshold (maintenance jobs)
            session: Already loaded session, to skip a storage read

        Returns:
            True if a compaction was dispatched
        """
        if session is None:
            session = await self.store.get_session(user_id, session_id)
            if session is None:
                raise SessionNotFound(session_id)

        if not force and session.total_messages < self.trigger_threshold:
            return False

        logger.info(
            f"Triggering memory compaction for session {session_id} "
            f"({session.total_messages} messages, force={force})"
        )
        self.dispatcher.dispatch(
            user_id,
            f"compact-session-{session_id}",
            lambda: self.compressor.compact_session(user_id, session_id),
        )
        return True
