"""Memory compressor: folds raw message batches into memory nodes.

Each fold takes the oldest unsummarized messages, condenses them into one
MemoryNode, appends it to the user's bounded node list, regenerates the
rollup narrative and finally hard-deletes exactly the folded messages.

Folds are idempotent per batch: the batch key (hash of the message ids) is
claimed in storage before any external call, so a duplicate trigger for the
same messages is a no-op. The claim is marked completed together with the
summary write and dropped once the messages are deleted; a completed claim
found by a later run means only the deletion is left to redo.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import uuid
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from pydantic import ValidationError

from sunday.errors import MalformedSynthesisOutput, StorageConflict, SummarizationUnavailable
from sunday.llm.prompts import MEMORY_NODE_INSTRUCTIONS, ROLLUP_INSTRUCTIONS
from sunday.tokens import estimate_tokens, extract_theme

from .schemas import (
    FIRST_CONVERSATION_SUMMARY,
    MEMORY_SUMMARY,
    MemoryNode,
    MemorySummary,
    Message,
    RollupResult,
    utcnow,
)
from .store import ChatStore

if TYPE_CHECKING:
    from sunday.llm.client import SundayLLM

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def batch_key(messages: Sequence[Message]) -> str:
    """Stable dedupe key for a batch: sha256 of its sorted message ids."""
    joined = "\n".join(sorted(msg.id for msg in messages))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def render_snippet(messages: Sequence[Message]) -> str:
    """Render a batch as "role: content" lines."""
    return "\n".join(f"{msg.role}: {msg.content}" for msg in messages)


def evict_oldest(nodes: Sequence[MemoryNode], cap: int) -> list[MemoryNode]:
    """Drop the oldest nodes by timestamp until at most `cap` remain.

    Args:
        nodes: Current node list
        cap: Maximum number of nodes to keep

    Returns:
        Remaining nodes ordered oldest first
    """
    ordered = sorted(nodes, key=lambda node: node.timestamp)
    if cap <= 0:
        return []
    return ordered[-cap:]


def parse_rollup(raw: str) -> RollupResult:
    """Parse the JSON object returned by the rollup call.

    Raises:
        MalformedSynthesisOutput: If the output is not a JSON object of the expected shape
    """
    text = _CODE_FENCE.sub("", raw.strip()).strip()
    try:
        return RollupResult.model_validate_json(text)
    except ValidationError as e:
        raise MalformedSynthesisOutput(f"Unparsable rollup output: {e}") from e


class MemoryCompressor:
    """Compaction procedure for sessions and stranded previous sessions."""

    def __init__(
        self,
        store: ChatStore,
        llm: "SundayLLM",
        summarize_batch: int = 10,
        max_memory_nodes: int = 50,
        sweep_min_messages: int = 4,
        sweep_batch: int = 6,
        sweep_max_batches: int = 5,
        max_retries: int = 3,
        retry_base_seconds: float = 0.2,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.llm = llm
        self.summarize_batch = summarize_batch
        self.max_memory_nodes = max_memory_nodes
        self.sweep_min_messages = sweep_min_messages
        self.sweep_batch = sweep_batch
        self.sweep_max_batches = sweep_max_batches
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.clock = clock or utcnow

    @classmethod
    def from_settings(cls, store: ChatStore, llm: "SundayLLM", settings) -> "MemoryCompressor":
        return cls(
            store,
            llm,
            summarize_batch=settings.summarize_batch,
            max_memory_nodes=settings.max_memory_nodes,
            sweep_min_messages=settings.sweep_min_messages,
            sweep_batch=settings.sweep_batch,
            sweep_max_batches=settings.sweep_max_batches,
            max_retries=settings.compaction_max_retries,
            retry_base_seconds=settings.compaction_retry_base_seconds,
        )

    async def compact_session(self, user_id: str, session_id: str) -> Optional[MemoryNode]:
        """Fold the oldest unsummarized batch of one session into a memory node.

        Args:
            user_id: Owner of the session
            session_id: Session to compact

        Returns:
            The new MemoryNode, or None if there was nothing to fold, the batch
            was already claimed, or node synthesis was unavailable
        """
        batch = await self.store.oldest_unsummarized([session_id], self.summarize_batch)
        if not batch:
            logger.info(f"No messages to compact in session {session_id}")
            return None

        logger.info(f"Compacting {len(batch)} messages of session {session_id} for user {user_id}")
        return await self._fold(user_id, batch)

    async def compact_previous_sessions(
        self, user_id: str, current_session_id: str
    ) -> list[MemoryNode]:
        """Sweep unsummarized messages stranded in the user's other sessions.

        Previous sessions are marked inactive. Folding starts only if at least
        `sweep_min_messages` are stranded, then repeats for up to
        `sweep_max_batches` batches.

        Returns:
            Memory nodes created by the sweep
        """
        sessions = await self.store.list_sessions(user_id)
        previous_ids = [session.id for session in sessions if session.id != current_session_id]
        if not previous_ids:
            logger.info(f"No previous sessions to sweep for user {user_id}")
            return []

        deactivated = await self.store.deactivate_sessions(user_id, current_session_id)
        if deactivated:
            logger.info(f"Marked {deactivated} previous sessions inactive for user {user_id}")

        nodes: list[MemoryNode] = []
        for batch_number in range(self.sweep_max_batches):
            pending = await self.store.oldest_unsummarized(previous_ids, self.sweep_batch)
            if not pending:
                break
            if batch_number == 0 and len(pending) < self.sweep_min_messages:
                logger.info(
                    f"Only {len(pending)} stranded messages for user {user_id}, skipping sweep"
                )
                break

            node = await self._fold(user_id, pending)
            if node is None:
                break
            nodes.append(node)

        logger.info(f"Sweep for user {user_id} created {len(nodes)} memory nodes")
        return nodes

    async def initialize_memory(self, user_id: str) -> bool:
        """Create the user's MemorySummary if it does not exist yet.

        Returns:
            True if the document was created
        """
        if await self.store.get_summary_document(user_id, MEMORY_SUMMARY) is not None:
            return False

        initial = MemorySummary.initial(user_id, self.clock())
        try:
            await self.store.save_summary_document(
                user_id, MEMORY_SUMMARY, initial.to_document(), expected_version=0
            )
        except StorageConflict:
            logger.debug(f"Memory summary for user {user_id} created concurrently")
            return False

        logger.info(f"Initialized memory summary for user {user_id}")
        return True

    async def _fold(self, user_id: str, batch: Sequence[Message]) -> Optional[MemoryNode]:
        key = batch_key(batch)
        if not await self.store.claim_batch(user_id, key):
            if await self.store.batch_completed(user_id, key):
                logger.info(
                    f"Batch {key[:12]} for user {user_id} already folded, finishing its deletion"
                )
                await self._delete_batch(user_id, key, batch)
            else:
                logger.info(f"Batch {key[:12]} for user {user_id} already claimed, skipping")
            return None

        try:
            snippet = render_snippet(batch)
            theme = extract_theme(snippet)
            node_summary = await self.llm.summarize(
                MEMORY_NODE_INSTRUCTIONS, f"Summarize this conversation:\n\n{snippet}"
            )
            node = MemoryNode(
                id=f"node_{uuid.uuid4().hex}",
                theme=theme,
                created_from=list(dict.fromkeys(msg.session_id for msg in batch)),
                summary=node_summary,
                timestamp=self.clock(),
            )
            logger.info(f"Generated memory node {node.id} (~{estimate_tokens(node_summary)} tokens)")
            summary = await self._save_with_retry(user_id, node, key)
        except SummarizationUnavailable as e:
            logger.warning(f"Memory node synthesis unavailable for user {user_id}, batch kept: {e}")
            await self.store.release_batch(user_id, key)
            return None
        except (Exception, asyncio.CancelledError):
            await self.store.release_batch(user_id, key)
            raise

        try:
            await self.store.record_memory_update(user_id, summary.generated_at)
        except Exception as e:
            logger.warning(f"Failed to record memory update time for user {user_id}: {e}")

        await self._delete_batch(user_id, key, batch)
        logger.info(f"Compacted {len(batch)} messages into memory node {node.id}")
        return node

    async def _delete_batch(self, user_id: str, key: str, batch: Sequence[Message]) -> None:
        """Hard-delete a folded batch per session, then drop its claim.

        If a delete raises, the completed claim stays so the next run over
        the same messages resumes here instead of folding them again.
        """
        by_session: dict[str, list[str]] = defaultdict(list)
        for msg in batch:
            by_session[msg.session_id].append(msg.id)

        for session_id, message_ids in by_session.items():
            deleted = await self.store.delete_messages(session_id, message_ids)
            if deleted != len(message_ids):
                logger.warning(
                    f"Expected to delete {len(message_ids)} messages from session "
                    f"{session_id}, deleted {deleted}"
                )

        await self.store.release_batch(user_id, key)

    async def _save_with_retry(self, user_id: str, node: MemoryNode, key: str) -> MemorySummary:
        """Re-read, append, roll up and compare-and-set the memory summary.

        The successful write also marks the batch claim completed.

        Raises:
            StorageConflict: If every attempt lost the race
        """
        attempt = 0
        while True:
            previous = MemorySummary.from_document(
                user_id, await self.store.get_summary_document(user_id, MEMORY_SUMMARY)
            )
            updated = await self._rollup(previous, node)
            try:
                updated.version = await self.store.save_summary_document(
                    user_id,
                    MEMORY_SUMMARY,
                    updated.to_document(),
                    previous.version,
                    completes_batch=key,
                )
            except StorageConflict as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"Giving up on memory summary write for user {user_id}: {e}")
                    raise
                delay = self.retry_base_seconds * 2 ** (attempt - 1)
                logger.warning(
                    f"Memory summary conflict for user {user_id}, retry {attempt} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            return updated

    async def _rollup(self, previous: MemorySummary, node: MemoryNode) -> MemorySummary:
        nodes = evict_oldest([*previous.memory_nodes, node], self.max_memory_nodes)
        evicted = len(previous.memory_nodes) + 1 - len(nodes)
        if evicted:
            logger.info(f"Evicted {evicted} oldest memory nodes for user {previous.user_id}")

        try:
            result = await self._synthesize(nodes)
        except (SummarizationUnavailable, MalformedSynthesisOutput) as e:
            logger.warning(f"Rollup failed for user {previous.user_id}, keeping previous memory: {e}")
            result = RollupResult()

        narrative = (result.summary or "").strip() or self._fallback_narrative(previous, nodes)
        now = self.clock()
        return MemorySummary(
            user_id=previous.user_id,
            summary=narrative,
            memory_nodes=nodes,
            effective_techniques=result.effective_techniques or previous.effective_techniques,
            user_preferences=result.user_preferences or previous.user_preferences,
            trigger_patterns=result.trigger_patterns or previous.trigger_patterns,
            progress_areas=result.progress_areas or previous.progress_areas,
            conversations_included=previous.conversations_included + 1,
            last_conversation_date=now,
            generated_at=now,
            token_count=estimate_tokens(narrative),
            version=previous.version,
        )

    async def _synthesize(self, nodes: Sequence[MemoryNode]) -> RollupResult:
        combined = "\n\n".join(f"{node.theme}: {node.summary}" for node in nodes)
        raw = await self.llm.summarize(
            ROLLUP_INSTRUCTIONS, f"Memory nodes to synthesize:\n\n{combined}"
        )
        return parse_rollup(raw)

    @staticmethod
    def _fallback_narrative(previous: MemorySummary, nodes: Sequence[MemoryNode]) -> str:
        if previous.summary and previous.summary != FIRST_CONVERSATION_SUMMARY:
            return previous.summary
        themes = list(dict.fromkeys(node.theme for node in nodes))
        return f"Topics explored so far with Sunday: {', '.join(themes)}."
