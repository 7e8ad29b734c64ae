"""Async Redis cache backend for summary documents."""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

# SET only if the cached copy is missing or carries an older version.
# KEYS[1] = key, ARGV = (payload, version, ttl seconds)
_SET_IF_NEWER = """
local current = redis.call('GET', KEYS[1])
if current then
    local ok, doc = pcall(cjson.decode, current)
    if ok and type(doc) == 'table' and (tonumber(doc['version']) or 0) >= tonumber(ARGV[2]) then
        return 0
    end
end
redis.call('SET', KEYS[1], ARGV[1], 'EX', tonumber(ARGV[3]))
return 1
"""


class AsyncRedisBackend:
    """Async Redis cache for per-user summary documents.

    Keys: sunday:{user_id}:summary:{doc_type} -> JSON document (with version)
    """

    def __init__(self) -> None:
        """Initialize Redis backend (connection created via connect())."""
        self.redis_client: Optional[redis.Redis] = None
        self.redis_ttl: int = 1800  # Default 30 minutes

    async def connect(
        self,
        redis_host: str,
        redis_password: str,
        redis_port: int = 6380,
        redis_ssl: bool = True,
        redis_ttl: int = 1800,
    ) -> None:
        """Create async Redis connection.

        Args:
            redis_host: Redis server hostname
            redis_password: Redis password/access key
            redis_port: Redis port (default: 6380 for Azure SSL)
            redis_ssl: Enable SSL/TLS connection (default: True for Azure)
            redis_ttl: TTL for Redis keys in seconds (default: 1800 = 30 minutes)
        """
        self.redis_ttl = redis_ttl

        try:
            self.redis_client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=redis_password,
                ssl=redis_ssl,
                ssl_cert_reqs="required" if redis_ssl else None,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                max_connections=10,
            )
            await self.redis_client.ping()
            logger.info(f"Redis connection successful: {redis_host}:{redis_port}")
        except redis.RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            self.redis_client = None
            raise RuntimeError(f"Failed to connect to Redis: {e}")

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            logger.info("Redis connection closed")

    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self.redis_client is not None

    @staticmethod
    def _summary_key(user_id: str, doc_type: str) -> str:
        return f"sunday:{user_id}:summary:{doc_type}"

    async def get_summary_document(
        self, user_id: str, doc_type: str
    ) -> Optional[Dict[str, Any]]:
        """Get a cached summary document. Returns None on miss or error."""
        if not self.redis_client:
            return None

        key = self._summary_key(user_id, doc_type)
        try:
            raw = await self.redis_client.get(key)
            if raw is not None:
                logger.debug(f"Redis cache hit for {key}")
                return json.loads(raw)
        except (redis.RedisError, json.JSONDecodeError) as e:
            logger.warning(f"Redis error in get_summary_document: {e}")

        return None

    async def set_summary_document(
        self, user_id: str, doc_type: str, document: Dict[str, Any]
    ) -> bool:
        """Cache a summary document with TTL unless a newer version is cached.

        A reader that loaded an old version from PostgreSQL cannot overwrite
        the copy a writer cached after saving a newer one.

        Returns:
            True if the cache now holds this version or a newer one, False on error
        """
        if not self.redis_client:
            return False

        key = self._summary_key(user_id, doc_type)
        version = int(document.get("version") or 0)
        try:
            stored = await self.redis_client.eval(
                _SET_IF_NEWER,
                1,
                key,
                json.dumps(document, default=str),
                version,
                self.redis_ttl,
            )
            if not stored:
                logger.debug(f"Skipped caching {key} v{version}, newer copy cached")
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis write error in set_summary_document: {e}")
            return False

    async def invalidate_summary_document(self, user_id: str, doc_type: str) -> bool:
        """Drop a cached summary document.

        Returns:
            True if successful, False otherwise
        """
        if not self.redis_client:
            return False

        try:
            await self.redis_client.delete(self._summary_key(user_id, doc_type))
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis error in invalidate_summary_document: {e}")
            return False
