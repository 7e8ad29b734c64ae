"""Per-turn context assembly from summaries and the recent message tail."""

import asyncio
import logging

from sunday.llm.prompts import CONTEXT_TEMPLATE, SUNDAY_SYSTEM_PROMPT
from sunday.tokens import TOKEN_BUDGET, estimate_tokens, truncate_to_budget

from .message_log import MessageLog
from .schemas import (
    HABIT_TASK_SUMMARY,
    MEMORY_SUMMARY,
    PROFILE_SUMMARY,
    RECENT_JOURNAL_SUMMARY,
    ChatSession,
    ConversationContext,
    SummaryDocument,
)
from .store import ChatStore

logger = logging.getLogger(__name__)

# (document type, budget key, neutral default)
SUMMARY_SOURCES = [
    (PROFILE_SUMMARY, "profile_summary", "New user, no profile data yet."),
    (RECENT_JOURNAL_SUMMARY, "journal_summary", "No recent journal entries."),
    (HABIT_TASK_SUMMARY, "habit_task_summary", "No habits or tasks tracked yet."),
    (MEMORY_SUMMARY, "memory_summary", "First conversation with this user."),
]


class ContextBuilder:
    """Builds the labelled summary prompt and the ordered history tail.

    Never fails because context is missing: every absent or unreadable
    source degrades to its neutral default.
    """

    def __init__(self, store: ChatStore, message_log: MessageLog, keep_recent: int = 20):
        self.store = store
        self.message_log = message_log
        self.keep_recent = keep_recent

    async def build(self, user_id: str, session: ChatSession) -> ConversationContext:
        """Load the four summaries and the tail concurrently and assemble them.

        Args:
            user_id: User ID
            session: Current session

        Returns:
            ConversationContext with prompt block and history
        """
        results = await asyncio.gather(
            *(self.store.get_summary_document(user_id, doc_type) for doc_type, _, _ in SUMMARY_SOURCES),
            self.message_log.tail(session, self.keep_recent),
            return_exceptions=True,
        )
        *documents, tail = results

        sections: dict[str, str] = {}
        missing: list[str] = []
        for (doc_type, budget_key, default), document in zip(SUMMARY_SOURCES, documents):
            text = self._summary_text(user_id, doc_type, document)
            if text is None:
                missing.append(doc_type)
                text = default
            sections[doc_type] = truncate_to_budget(text, TOKEN_BUDGET[budget_key])

        if isinstance(tail, BaseException):
            logger.warning(f"Failed to load message tail for session {session.id}: {tail}")
            tail = []

        prompt = CONTEXT_TEMPLATE.format(
            profile=sections[PROFILE_SUMMARY],
            journal=sections[RECENT_JOURNAL_SUMMARY],
            habits=sections[HABIT_TASK_SUMMARY],
            memory=sections[MEMORY_SUMMARY],
        )
        history = [{"role": msg.role, "content": msg.content} for msg in tail]

        context_tokens = estimate_tokens(prompt)
        history_tokens = estimate_tokens(" ".join(msg["content"] for msg in history))
        logger.info(
            f"Context for session {session.id}: ~{context_tokens} context tokens, "
            f"~{history_tokens} history tokens ({len(history)} messages)"
        )

        return ConversationContext(
            prompt=prompt,
            history=history,
            context_tokens=context_tokens,
            history_tokens=history_tokens,
            missing_sources=missing,
        )

    @staticmethod
    def _summary_text(user_id: str, doc_type: str, document) -> str | None:
        if isinstance(document, BaseException):
            logger.warning(f"Failed to load {doc_type} for user {user_id}: {document}")
            return None
        try:
            parsed = SummaryDocument.from_document(document)
        except Exception as e:
            logger.warning(f"Unreadable {doc_type} for user {user_id}: {e}")
            return None
        return parsed.summary if parsed else None


def system_prompt(context: ConversationContext) -> str:
    """Sunday persona followed by the assembled context block."""
    return SUNDAY_SYSTEM_PROMPT + "\n\n" + context.prompt
