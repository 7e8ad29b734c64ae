"""Async chat store with PostgreSQL + Redis summary caching."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sunday.errors import StorageConflict
from sunday.memory.schemas import ChatSession, Message, UserStatus

from .postgresql import AsyncPostgreSQLBackend
from .redis import AsyncRedisBackend

logger = logging.getLogger(__name__)


class AsyncChatStore:
    """Storage facade used by the memory core.

    PostgreSQL is the source of truth for everything. Redis (optional) caches
    summary documents:
    - Cache-aside reads: Try Redis first, fallback to PostgreSQL on miss
    - Write-through: Write to PostgreSQL, then cache the new version (guarded
      so an older version never replaces a newer one)
    """

    def __init__(self) -> None:
        self.backend: Optional[AsyncPostgreSQLBackend] = None
        self.cache: Optional[AsyncRedisBackend] = None
        self._use_cache: bool = False

    async def initialize(
        self,
        postgres_connection_string: str,
        redis_host: Optional[str] = None,
        redis_password: Optional[str] = None,
        redis_port: int = 6380,
        redis_ssl: bool = True,
        redis_ttl: int = 1800,
    ) -> None:
        """Initialize database connections and schema.

        Args:
            postgres_connection_string: PostgreSQL connection string
            redis_host: Redis server hostname (optional, for caching)
            redis_password: Redis password (optional)
            redis_port: Redis port (default: 6380)
            redis_ssl: Enable SSL/TLS (default: True)
            redis_ttl: TTL for Redis keys in seconds (default: 1800)
        """
        # Initialize PostgreSQL (required)
        self.backend = AsyncPostgreSQLBackend()
        await self.backend.connect(postgres_connection_string)
        await self.backend.ensure_schema()

        # Initialize Redis (optional cache)
        if redis_host and redis_password:
            try:
                self.cache = AsyncRedisBackend()
                await self.cache.connect(
                    redis_host=redis_host,
                    redis_password=redis_password,
                    redis_port=redis_port,
                    redis_ssl=redis_ssl,
                    redis_ttl=redis_ttl,
                )
                self._use_cache = True
                logger.info("Redis cache enabled")
            except Exception as e:
                logger.warning(f"Redis cache unavailable, continuing without cache: {e}")
                self.cache = None
                self._use_cache = False
        else:
            logger.info("Redis not configured, running without cache")

    async def close(self) -> None:
        """Close all database connections."""
        if self.backend:
            await self.backend.close()
        if self.cache:
            await self.cache.close()

    def _db(self) -> AsyncPostgreSQLBackend:
        if not self.backend:
            raise RuntimeError("Database not initialized")
        return self.backend

    def _cache_ready(self) -> bool:
        return bool(self._use_cache and self.cache and self.cache.is_available())

    # --- Sessions and messages (PostgreSQL only) ---

    async def create_session(self, session: ChatSession) -> None:
        await self._db().create_session(session)

    async def get_session(self, user_id: str, session_id: str) -> Optional[ChatSession]:
        return await self._db().get_session(user_id, session_id)

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        return await self._db().list_sessions(user_id)

    async def deactivate_sessions(self, user_id: str, keep_session_id: str) -> int:
        return await self._db().deactivate_sessions(user_id, keep_session_id)

    async def set_session_title(self, user_id: str, session_id: str, title: str) -> None:
        await self._db().set_session_title(user_id, session_id, title)

    async def append_message(self, message: Message) -> ChatSession:
        return await self._db().append_message(message)

    async def tail_messages(self, session_id: str, limit: int) -> List[Message]:
        return await self._db().tail_messages(session_id, limit)

    async def oldest_unsummarized(self, session_ids: Sequence[str], limit: int) -> List[Message]:
        return await self._db().oldest_unsummarized(session_ids, limit)

    async def delete_messages(self, session_id: str, message_ids: Sequence[str]) -> int:
        return await self._db().delete_messages(session_id, message_ids)

    async def claim_batch(self, user_id: str, batch_key: str) -> bool:
        return await self._db().claim_batch(user_id, batch_key)

    async def batch_completed(self, user_id: str, batch_key: str) -> bool:
        return await self._db().batch_completed(user_id, batch_key)

    async def release_batch(self, user_id: str, batch_key: str) -> None:
        await self._db().release_batch(user_id, batch_key)

    # --- Summary documents (cached) ---

    async def get_summary_document(
        self, user_id: str, doc_type: str
    ) -> Optional[Dict[str, Any]]:
        """Cache-aside read of a summary document."""
        if self._cache_ready():
            cached = await self.cache.get_summary_document(user_id, doc_type)
            if cached is not None:
                return cached
            logger.debug(f"Cache miss for {doc_type} of user {user_id}")

        document = await self._db().get_summary_document(user_id, doc_type)

        if document is not None and self._cache_ready():
            await self.cache.set_summary_document(user_id, doc_type, document)

        return document

    async def save_summary_document(
        self,
        user_id: str,
        doc_type: str,
        data: Dict[str, Any],
        expected_version: int,
        completes_batch: Optional[str] = None,
    ) -> int:
        """Write to PostgreSQL first, then cache the new version.

        The cached copy is dropped on conflict, so a retrying writer re-reads
        the current version from PostgreSQL. If caching the new version
        fails, the old copy is dropped instead.
        """
        try:
            version = await self._db().save_summary_document(
                user_id, doc_type, data, expected_version, completes_batch
            )
        except StorageConflict:
            if self._cache_ready():
                await self.cache.invalidate_summary_document(user_id, doc_type)
            raise

        if self._cache_ready():
            document = {**data, "version": version}
            if not await self.cache.set_summary_document(user_id, doc_type, document):
                await self.cache.invalidate_summary_document(user_id, doc_type)

        return version

    # --- User status ---

    async def get_user_status(self, user_id: str) -> UserStatus:
        return await self._db().get_user_status(user_id)

    async def update_user_status(
        self, user_id: str, mutate: Callable[[UserStatus], UserStatus]
    ) -> UserStatus:
        return await self._db().update_user_status(user_id, mutate)

    async def record_memory_update(self, user_id: str, at: datetime) -> None:
        await self._db().record_memory_update(user_id, at)
