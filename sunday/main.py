"""FastAPI application for the Sunday companion memory service.

This module provides the main FastAPI application with:
- Lifespan management for secrets, storage, the LLM client and background compaction
- CORS middleware
- Route registration
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .infrastructure import AKV, AsyncChatStore
from .infrastructure.tracing import configure_tracing
from .llm.client import SundayLLM
from .llm.model_registry import ModelRegistry
from .memory import CompactionDispatcher, SessionRegistry
from .routes import chat, memory, sessions, user

# All secrets to pre-load at startup
REQUIRED_SECRETS = [
    "POSTGRES-ADMIN-PASSWORD",
    "AZURE-OPENAI-API-KEY",
]
OPTIONAL_SECRETS = [
    "REDIS-PASSWORD",
    "APPLICATIONINSIGHTS-CONNECTION-STRING",
]

# Seconds to wait for queued compactions before cancelling them
SHUTDOWN_DRAIN_SECONDS = 30

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan.

    Startup: load secrets, connect PostgreSQL (+ Redis cache), build the LLM
    client and wire the memory core. Shutdown: let queued compactions finish,
    then close connections.
    """
    app_settings = get_settings()
    logger.info(f"Starting application with mode: {app_settings.chat_store_mode}")

    # Initialize Key Vault client and pre-load all secrets (env vars in local modes)
    is_local = app_settings.chat_store_mode.startswith("local")
    akv = AKV(vault_name=None if is_local else app_settings.key_vault_name)
    akv.load_secrets(REQUIRED_SECRETS, optional=OPTIONAL_SECRETS)
    app.state.keyvault = akv

    configure_tracing(app_settings, akv.find_secret("APPLICATIONINSIGHTS-CONNECTION-STRING"))

    model_registry = ModelRegistry(akv)
    app.state.model_registry = model_registry
    logger.info(f"Models available: {[m.name for m in model_registry.list_models()]}")

    postgres_password = akv.get_secret("POSTGRES-ADMIN-PASSWORD")
    postgres_connection_string = app_settings.get_postgres_connection_string(postgres_password)

    store = AsyncChatStore()
    if app_settings.use_redis:
        await store.initialize(
            postgres_connection_string=postgres_connection_string,
            redis_host=app_settings.redis_host,
            redis_password=akv.find_secret("REDIS-PASSWORD"),
            redis_port=app_settings.redis_port,
            redis_ssl=app_settings.redis_ssl,
            redis_ttl=app_settings.redis_ttl_seconds,
        )
        logger.info("Initialized with PostgreSQL + Redis summary cache")
    else:
        await store.initialize(postgres_connection_string=postgres_connection_string)
        logger.info("Initialized with PostgreSQL only")

    llm = SundayLLM(
        registry=model_registry,
        chat_model=app_settings.chat_model,
        memory_model=app_settings.memory_model,
        summarization_timeout=app_settings.summarization_timeout_seconds,
        completion_timeout=app_settings.completion_timeout_seconds,
    )
    dispatcher = CompactionDispatcher()

    # Store in app state for dependency injection
    app.state.store = store
    app.state.llm = llm
    app.state.dispatcher = dispatcher
    app.state.registry = SessionRegistry.from_settings(store, llm, dispatcher, app_settings)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down application")
    try:
        await asyncio.wait_for(dispatcher.drain(), timeout=SHUTDOWN_DRAIN_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Background compactions still running at shutdown, cancelling")
        await dispatcher.shutdown()
    await store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Sunday Companion API",
        description="Chat API for the Sunday wellness companion with bounded-context memory",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(user.router, prefix="/api", tags=["user"])
    app.include_router(chat.router, prefix="/api", tags=["chat"])
    app.include_router(sessions.router, prefix="/api", tags=["sessions"])
    app.include_router(memory.router, prefix="/api", tags=["memory"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Create the app instance
app = create_app()
