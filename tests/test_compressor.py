"""Tests for memory compaction: folding, eviction, rollup fallbacks and idempotency."""

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from sunday.errors import MalformedSynthesisOutput, StorageConflict, SummarizationUnavailable
from sunday.memory import MemoryCompressor, evict_oldest
from sunday.memory.compressor import batch_key, parse_rollup, render_snippet
from sunday.memory.schemas import (
    FIRST_CONVERSATION_SUMMARY,
    MEMORY_SUMMARY,
    MemoryNode,
    MemorySummary,
    Message,
)

from .fakes import USER_ID, fill_session


def make_node(i: int, base: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)) -> MemoryNode:
    return MemoryNode(
        id=f"node_{i}",
        theme="sleep issues",
        created_from=["old-session"],
        summary=f"Older memory {i}",
        timestamp=base + timedelta(hours=i),
    )


def seed_memory(store, **fields) -> MemorySummary:
    summary = MemorySummary(user_id=USER_ID, **fields)
    store.put_summary(USER_ID, MEMORY_SUMMARY, summary.to_document())
    return summary


async def stored_memory(store) -> MemorySummary:
    return MemorySummary.from_document(
        USER_ID, await store.get_summary_document(USER_ID, MEMORY_SUMMARY)
    )


def assert_counters_consistent(store, session_id):
    session = store.sessions[session_id]
    retained = len(store.retained(session_id))
    assert session.messages_retained == retained
    assert session.summarized_message_count + retained == session.total_messages


# --- Pure helpers ---


def test_evict_oldest_removes_numerically_oldest_first():
    nodes = [make_node(i) for i in range(21)]
    random.Random(7).shuffle(nodes)

    kept = evict_oldest(nodes, 20)

    assert len(kept) == 20
    assert "node_0" not in {node.id for node in kept}
    assert [node.id for node in kept] == [f"node_{i}" for i in range(1, 21)]


def test_evict_oldest_under_cap_keeps_everything():
    nodes = [make_node(i) for i in range(3)]
    assert evict_oldest(nodes, 20) == nodes


def test_batch_key_ignores_order(clock):
    a = Message(id="a", session_id="s", user_id=USER_ID, role="user", content="x", timestamp=clock())
    b = Message(id="b", session_id="s", user_id=USER_ID, role="assistant", content="y", timestamp=clock())

    assert batch_key([a, b]) == batch_key([b, a])
    assert batch_key([a]) != batch_key([a, b])
    assert render_snippet([a, b]) == "user: x\nassistant: y"


def test_parse_rollup_accepts_code_fences():
    raw = '```json\n{"summary": "ok", "effectiveTechniques": ["journaling"]}\n```'
    result = parse_rollup(raw)
    assert result.summary == "ok"
    assert result.effective_techniques == ["journaling"]
    assert result.trigger_patterns is None


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"summary": 12, "progressAreas": "x"}'])
def test_parse_rollup_rejects_malformed_output(raw):
    with pytest.raises(MalformedSynthesisOutput):
        parse_rollup(raw)


# --- compact_session ---


@pytest.mark.asyncio
async def test_empty_session_is_noop(compressor, store, llm, make_session):
    session = await make_session()

    assert await compressor.compact_session(USER_ID, session.id) is None

    assert llm.summarize_calls == []
    assert (USER_ID, MEMORY_SUMMARY) not in store.summaries
    assert store.sessions[session.id] == session
    assert store.claims == {}


@pytest.mark.asyncio
async def test_compaction_folds_oldest_batch_into_one_node(compressor, store, message_log, make_session):
    await compressor.initialize_memory(USER_ID)
    before = await stored_memory(store)
    session = await make_session()
    session = await fill_session(message_log, session, 20)
    oldest_ids = [msg.id for msg in store.retained(session.id)[:10]]

    node = await compressor.compact_session(USER_ID, session.id)

    assert node is not None
    assert node.created_from == [session.id]
    assert node.theme == "work stress"

    updated = store.sessions[session.id]
    assert updated.messages_retained == 10
    assert updated.summarized_message_count == 10
    assert updated.last_summarized_at is not None
    assert not set(oldest_ids) & {msg.id for msg in store.retained(session.id)}
    assert_counters_consistent(store, session.id)

    memory = await stored_memory(store)
    assert [n.id for n in memory.memory_nodes] == [node.id]
    assert memory.summary
    assert memory.summary != before.summary
    assert memory.effective_techniques == ["box breathing"]
    assert memory.conversations_included == 1
    assert memory.token_count > 0
    assert store.status[USER_ID].last_memory_update == memory.generated_at


@pytest.mark.asyncio
async def test_back_to_back_compactions_never_refold_messages(compressor, store, llm, message_log, make_session):
    session = await make_session()
    await fill_session(message_log, session, 20)

    first = await compressor.compact_session(USER_ID, session.id)
    second = await compressor.compact_session(USER_ID, session.id)
    third = await compressor.compact_session(USER_ID, session.id)

    assert first is not None and second is not None
    assert third is None

    node_snippets = [text for _, text in llm.summarize_calls if text.startswith("Summarize this")]
    assert len(node_snippets) == 2
    first_lines = set(node_snippets[0].splitlines()[2:])
    second_lines = set(node_snippets[1].splitlines()[2:])
    assert not first_lines & second_lines

    assert store.retained(session.id) == []
    assert store.sessions[session.id].summarized_message_count == 20
    assert_counters_consistent(store, session.id)


@pytest.mark.asyncio
async def test_concurrent_compactions_of_same_batch_fold_once(compressor, store, llm, message_log, make_session):
    session = await make_session()
    await fill_session(message_log, session, 20)
    llm.gate = asyncio.Event()

    first = asyncio.create_task(compressor.compact_session(USER_ID, session.id))
    second = asyncio.create_task(compressor.compact_session(USER_ID, session.id))
    for _ in range(5):
        await asyncio.sleep(0)
    llm.gate.set()
    results = await asyncio.gather(first, second)

    assert sum(1 for node in results if node is not None) == 1
    assert llm.node_calls == 1
    assert len((await stored_memory(store)).memory_nodes) == 1
    assert store.sessions[session.id].messages_retained == 10
    assert_counters_consistent(store, session.id)


@pytest.mark.asyncio
async def test_node_cap_evicts_single_oldest(store, llm, clock, message_log, make_session):
    compressor = MemoryCompressor(store, llm, max_memory_nodes=20, retry_base_seconds=0, clock=clock)
    seed_memory(store, memory_nodes=[make_node(i) for i in range(20)])
    session = await make_session()
    await fill_session(message_log, session, 10)

    node = await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    ids = [n.id for n in memory.memory_nodes]
    assert len(ids) == 20
    assert "node_0" not in ids
    assert ids[-1] == node.id


@pytest.mark.asyncio
async def test_rollup_failure_keeps_previous_memory(compressor, store, llm, message_log, make_session):
    seed_memory(
        store,
        summary="The user has been working on sleep.",
        effective_techniques=["body scan"],
        user_preferences=["gentle tone"],
        trigger_patterns=["late screens"],
        progress_areas=["bedtime routine"],
        conversations_included=3,
    )
    llm.rollup_text = SummarizationUnavailable("rollup timed out")
    session = await make_session()
    await fill_session(message_log, session, 10)

    node = await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    assert node is not None
    assert memory.summary == "The user has been working on sleep."
    assert memory.effective_techniques == ["body scan"]
    assert memory.user_preferences == ["gentle tone"]
    assert memory.trigger_patterns == ["late screens"]
    assert memory.progress_areas == ["bedtime routine"]
    assert memory.conversations_included == 4
    assert [n.id for n in memory.memory_nodes] == [node.id]
    assert store.retained(session.id) == []


@pytest.mark.asyncio
async def test_malformed_rollup_keeps_previous_lists(compressor, store, llm, message_log, make_session):
    seed_memory(store, summary="Earlier narrative.", effective_techniques=["grounding"])
    llm.rollup_text = "Sure! Here is the summary you asked for."
    session = await make_session()
    await fill_session(message_log, session, 10)

    await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    assert memory.summary == "Earlier narrative."
    assert memory.effective_techniques == ["grounding"]


@pytest.mark.asyncio
async def test_partial_rollup_falls_back_per_field(compressor, store, llm, message_log, make_session):
    seed_memory(store, summary="Earlier narrative.", trigger_patterns=["exams"], user_preferences=["humor"])
    llm.rollup_text = '{"summary": "New narrative.", "effectiveTechniques": ["walks"], "userPreferences": []}'
    session = await make_session()
    await fill_session(message_log, session, 10)

    await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    assert memory.summary == "New narrative."
    assert memory.effective_techniques == ["walks"]
    assert memory.user_preferences == ["humor"]
    assert memory.trigger_patterns == ["exams"]


@pytest.mark.asyncio
async def test_rollup_failure_without_history_composes_from_themes(compressor, store, llm, message_log, make_session):
    await compressor.initialize_memory(USER_ID)
    llm.rollup_text = MalformedSynthesisOutput("bad")
    session = await make_session()
    await fill_session(message_log, session, 10)

    await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    assert memory.summary != FIRST_CONVERSATION_SUMMARY
    assert "work stress" in memory.summary


@pytest.mark.asyncio
async def test_node_synthesis_failure_keeps_batch(compressor, store, llm, message_log, make_session):
    llm.node_text = SummarizationUnavailable("model down")
    session = await make_session()
    session = await fill_session(message_log, session, 20)

    assert await compressor.compact_session(USER_ID, session.id) is None

    assert len(store.retained(session.id)) == 20
    assert store.sessions[session.id] == session
    assert store.claims == {}
    assert (USER_ID, MEMORY_SUMMARY) not in store.summaries

    # A later trigger can retry the same messages
    llm.node_text = "Recovered summary."
    assert await compressor.compact_session(USER_ID, session.id) is not None
    assert store.sessions[session.id].messages_retained == 10


@pytest.mark.asyncio
async def test_summary_write_conflict_is_retried(compressor, store, llm, message_log, make_session):
    await compressor.initialize_memory(USER_ID)
    store.conflicts_to_raise = 2
    session = await make_session()
    await fill_session(message_log, session, 10)

    node = await compressor.compact_session(USER_ID, session.id)

    memory = await stored_memory(store)
    assert [n.id for n in memory.memory_nodes] == [node.id]
    rollup_calls = [text for _, text in llm.summarize_calls if text.startswith("Memory nodes")]
    assert len(rollup_calls) == 3
    assert store.retained(session.id) == []


@pytest.mark.asyncio
async def test_persistent_conflict_releases_claim_and_keeps_messages(compressor, store, message_log, make_session):
    await compressor.initialize_memory(USER_ID)
    store.conflicts_to_raise = 10
    session = await make_session()
    await fill_session(message_log, session, 10)

    with pytest.raises(StorageConflict):
        await compressor.compact_session(USER_ID, session.id)

    assert len(store.retained(session.id)) == 10
    assert store.claims == {}


@pytest.mark.asyncio
async def test_failed_delete_is_finished_by_next_run(compressor, store, llm, message_log, make_session):
    session = await make_session()
    await fill_session(message_log, session, 30)
    store.delete_failures = 1

    with pytest.raises(ConnectionError):
        await compressor.compact_session(USER_ID, session.id)

    assert len(store.retained(session.id)) == 30
    assert list(store.claims.values()) == [True]
    assert len((await stored_memory(store)).memory_nodes) == 1

    # The next run deletes the already folded batch without folding it again
    assert await compressor.compact_session(USER_ID, session.id) is None
    assert llm.node_calls == 1
    assert len(store.retained(session.id)) == 20
    assert store.claims == {}
    assert len((await stored_memory(store)).memory_nodes) == 1

    assert await compressor.compact_session(USER_ID, session.id) is not None
    assert len(store.retained(session.id)) == 10
    assert len((await stored_memory(store)).memory_nodes) == 2
    assert_counters_consistent(store, session.id)


@pytest.mark.asyncio
async def test_finished_folds_leave_no_claims(compressor, store, message_log, make_session):
    session = await make_session()
    await fill_session(message_log, session, 40)

    for _ in range(4):
        assert await compressor.compact_session(USER_ID, session.id) is not None

    assert store.retained(session.id) == []
    assert store.claims == {}


@pytest.mark.asyncio
async def test_cancelled_fold_releases_claim(compressor, store, llm, message_log, make_session):
    session = await make_session()
    await fill_session(message_log, session, 10)
    llm.gate = asyncio.Event()

    task = asyncio.create_task(compressor.compact_session(USER_ID, session.id))
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.claims == {}
    assert len(store.retained(session.id)) == 10


# --- initialize_memory ---


@pytest.mark.asyncio
async def test_initialize_memory_creates_once(compressor, store):
    assert await compressor.initialize_memory(USER_ID) is True
    assert await compressor.initialize_memory(USER_ID) is False

    memory = await stored_memory(store)
    assert memory.summary == FIRST_CONVERSATION_SUMMARY
    assert memory.memory_nodes == []
    assert memory.version == 1


# --- compact_previous_sessions ---


@pytest.mark.asyncio
async def test_sweep_folds_stranded_messages_across_sessions(compressor, store, message_log, make_session):
    old_a = await fill_session(message_log, await make_session("old-a"), 3)
    old_b = await fill_session(message_log, await make_session("old-b"), 2)
    current = await make_session("current")

    nodes = await compressor.compact_previous_sessions(USER_ID, current.id)

    assert len(nodes) == 1
    assert nodes[0].created_from == ["old-a", "old-b"]
    assert store.retained("old-a") == [] and store.retained("old-b") == []
    assert store.sessions["old-a"].summarized_message_count == 3
    assert store.sessions["old-b"].summarized_message_count == 2
    assert not store.sessions["old-a"].is_active
    assert not store.sessions["old-b"].is_active
    assert store.sessions["current"].is_active
    for session in (old_a, old_b):
        assert_counters_consistent(store, session.id)


@pytest.mark.asyncio
async def test_sweep_skips_below_minimum(compressor, store, llm, message_log, make_session):
    await fill_session(message_log, await make_session("old"), 3)
    current = await make_session("current")

    assert await compressor.compact_previous_sessions(USER_ID, current.id) == []
    assert llm.summarize_calls == []
    assert len(store.retained("old")) == 3
    assert not store.sessions["old"].is_active


@pytest.mark.asyncio
async def test_sweep_repeats_up_to_max_batches(store, llm, clock, message_log, make_session):
    compressor = MemoryCompressor(
        store, llm, sweep_batch=6, sweep_max_batches=2, retry_base_seconds=0, clock=clock
    )
    await fill_session(message_log, await make_session("old"), 14)
    current = await make_session("current")

    nodes = await compressor.compact_previous_sessions(USER_ID, current.id)

    assert len(nodes) == 2
    assert len(store.retained("old")) == 2
    assert len((await stored_memory(store)).memory_nodes) == 2


@pytest.mark.asyncio
async def test_sweep_without_previous_sessions(compressor, make_session):
    current = await make_session("current")
    assert await compressor.compact_previous_sessions(USER_ID, current.id) == []
