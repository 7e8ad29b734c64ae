"""Infrastructure layer for external service integrations."""

from .keyvault import AKV
from .manager import AsyncChatStore
from .postgresql import AsyncPostgreSQLBackend
from .redis import AsyncRedisBackend

__all__ = [
    "AKV",
    "AsyncChatStore",
    "AsyncPostgreSQLBackend",
    "AsyncRedisBackend",
]
