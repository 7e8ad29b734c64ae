"""Shared fixtures: in-memory store, scripted LLM and wired memory components."""

import pytest

from sunday.memory import (
    ChatSession,
    CompactionDispatcher,
    ContextBuilder,
    ConversationQuotaGovernor,
    MemoryCompressor,
    MessageLog,
    SessionRegistry,
)

from .fakes import USER_ID, FakeClock, FakeLLM, InMemoryStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def message_log(store, clock):
    return MessageLog(store, clock=clock)


@pytest.fixture
def compressor(store, llm, clock):
    return MemoryCompressor(
        store,
        llm,
        summarize_batch=10,
        max_memory_nodes=50,
        retry_base_seconds=0,
        clock=clock,
    )


@pytest.fixture
def quota(store, clock):
    return ConversationQuotaGovernor(store, lifetime_limit=25, clock=clock)


@pytest.fixture
def dispatcher():
    return CompactionDispatcher()


@pytest.fixture
def registry(store, llm, message_log, compressor, quota, dispatcher, clock):
    return SessionRegistry(
        store=store,
        llm=llm,
        message_log=message_log,
        context_builder=ContextBuilder(store, message_log, keep_recent=20),
        compressor=compressor,
        quota=quota,
        dispatcher=dispatcher,
        trigger_threshold=20,
        clock=clock,
    )


@pytest.fixture
def make_session(store, clock):
    """Create and persist a session for USER_ID."""

    async def _make(session_id: str = "s1", user_id: str = USER_ID) -> ChatSession:
        session = ChatSession.new(session_id, user_id, clock())
        await store.create_session(session)
        return session

    return _make

