"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from sunday.llm.model_registry import DEFAULT_MODEL, GPT41_MINI


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Resource prefix for Azure resources
    resource_prefix: str = "sunday-dev"

    # Storage mode: "postgres", "redis" (postgres + redis summary cache),
    # "local_psql" or "local_redis" (env secrets, local test user)
    chat_store_mode: str = "redis"

    # PostgreSQL configuration
    postgres_port: int = 5432
    postgres_admin_login: str = "pgadmin"
    postgres_database: str = "sunday"
    postgres_sslmode: str = "require"
    postgres_host_override: Optional[str] = None

    # Redis configuration
    redis_port: int = 6380
    redis_ssl: bool = True
    redis_ttl_seconds: int = 1800
    redis_host_override: Optional[str] = None

    # Retention policy
    keep_recent: int = 20              # Tail size loaded into every turn
    summarize_batch: int = 10          # Messages folded into one memory node
    trigger_threshold: int = 20        # Compact once total_messages reaches this
    max_memory_nodes: int = 50         # FIFO cap on memory nodes per user
    sweep_min_messages: int = 4        # Previous-session sweep skips below this
    sweep_batch: int = 6               # Messages per node during the sweep
    sweep_max_batches: int = 5         # Nodes per sweep run

    # Conversation quota (None disables a cap)
    quota_lifetime_sessions: Optional[int] = 25
    quota_window_sessions: Optional[int] = None
    quota_reset_time: str = "00:00"    # HH:MM wall-clock boundary
    quota_timezone: str = "UTC"

    # Models
    chat_model: str = DEFAULT_MODEL
    memory_model: str = GPT41_MINI.name   # Mini model for cheaper summarization
    summarization_timeout_seconds: float = 20.0
    completion_timeout_seconds: float = 45.0

    # Compaction retry on concurrent summary writes
    compaction_max_retries: int = 3
    compaction_retry_base_seconds: float = 0.2

    # Observability settings
    tracing_backend: str = "disabled"  # "disabled", "local", "appinsights"
    local_otlp_endpoint: str = "http://localhost:4317"
    enable_sensitive_data: bool = False

    # Local testing credentials (for local_psql/local_redis modes)
    local_test_client_id: str = "00000000-0000-0000-0000-000000000001"
    local_test_username: str = "local_user"

    @property
    def key_vault_name(self) -> str:
        """Get Key Vault name derived from resource prefix."""
        return f"{self.resource_prefix.replace('-', '')}kv"

    @property
    def postgres_host(self) -> str:
        """Get PostgreSQL host derived from resource prefix."""
        if self.postgres_host_override:
            return self.postgres_host_override
        return f"{self.resource_prefix}-postgres.postgres.database.azure.com"

    @property
    def redis_host(self) -> str:
        """Get Redis host derived from resource prefix."""
        if self.redis_host_override:
            return self.redis_host_override
        return f"{self.resource_prefix}-redis.redis.cache.windows.net"

    @property
    def use_redis(self) -> bool:
        return self.chat_store_mode in ["redis", "local_redis"]

    def get_postgres_connection_string(self, password: str) -> str:
        """Build PostgreSQL connection string.

        Args:
            password: PostgreSQL admin password from Key Vault

        Returns:
            PostgreSQL connection string
        """
        return (
            f"postgresql://{self.postgres_admin_login}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}"
            f"/{self.postgres_database}?sslmode={self.postgres_sslmode}"
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
