"""Tests for per-turn context assembly."""

import pytest

from sunday.llm.prompts import SUNDAY_SYSTEM_PROMPT
from sunday.memory import ContextBuilder, system_prompt
from sunday.memory.schemas import (
    HABIT_TASK_SUMMARY,
    MEMORY_SUMMARY,
    PROFILE_SUMMARY,
    RECENT_JOURNAL_SUMMARY,
)

from .fakes import USER_ID, fill_session

DEFAULTS = [
    "New user, no profile data yet.",
    "No recent journal entries.",
    "No habits or tasks tracked yet.",
    "First conversation with this user.",
]


@pytest.fixture
def builder(store, message_log):
    return ContextBuilder(store, message_log, keep_recent=4)


@pytest.mark.asyncio
async def test_all_sources_missing_uses_defaults(builder, make_session):
    session = await make_session()

    context = await builder.build(USER_ID, session)

    for default in DEFAULTS:
        assert default in context.prompt
    assert context.missing_sources == [
        PROFILE_SUMMARY,
        RECENT_JOURNAL_SUMMARY,
        HABIT_TASK_SUMMARY,
        MEMORY_SUMMARY,
    ]
    assert context.history == []
    assert context.context_tokens > 0


@pytest.mark.asyncio
async def test_present_summaries_are_labelled(builder, store, make_session):
    store.put_summary(USER_ID, PROFILE_SUMMARY, {"summary": "Likes hiking", "level": 4})
    store.put_summary(USER_ID, RECENT_JOURNAL_SUMMARY, {"summary": "Wrote about exams"})
    store.put_summary(USER_ID, MEMORY_SUMMARY, {"summary": "Working on sleep hygiene"})
    session = await make_session()

    context = await builder.build(USER_ID, session)

    assert "**Profile:** Likes hiking" in context.prompt
    assert "Wrote about exams" in context.prompt
    assert "Working on sleep hygiene" in context.prompt
    assert "No habits or tasks tracked yet." in context.prompt
    assert context.missing_sources == [HABIT_TASK_SUMMARY]


@pytest.mark.asyncio
async def test_blank_summary_counts_as_missing(builder, store, make_session):
    store.put_summary(USER_ID, PROFILE_SUMMARY, {"summary": "   "})
    session = await make_session()

    context = await builder.build(USER_ID, session)

    assert "New user, no profile data yet." in context.prompt
    assert PROFILE_SUMMARY in context.missing_sources


@pytest.mark.asyncio
async def test_failed_reads_degrade_to_defaults(builder, store, message_log, make_session):
    store.put_summary(USER_ID, PROFILE_SUMMARY, {"summary": "Likes hiking"})
    store.fail_reads.update({PROFILE_SUMMARY, MEMORY_SUMMARY, "tail"})
    session = await make_session()
    session = await fill_session(message_log, session, 2)

    context = await builder.build(USER_ID, session)

    assert "New user, no profile data yet." in context.prompt
    assert "First conversation with this user." in context.prompt
    assert context.history == []


@pytest.mark.asyncio
async def test_long_summary_is_truncated_to_budget(builder, store, make_session):
    store.put_summary(USER_ID, PROFILE_SUMMARY, {"summary": "p" * 1000})
    session = await make_session()

    context = await builder.build(USER_ID, session)

    assert "p" * 400 + "..." in context.prompt
    assert "p" * 401 not in context.prompt


@pytest.mark.asyncio
async def test_history_is_tail_oldest_first(builder, message_log, make_session):
    session = await make_session()
    session = await fill_session(message_log, session, 6, text="note")

    context = await builder.build(USER_ID, session)

    assert [m["content"] for m in context.history] == ["note #2", "note #3", "note #4", "note #5"]
    assert context.history[0]["role"] == "user"
    assert context.history_tokens > 0


@pytest.mark.asyncio
async def test_system_prompt_prepends_persona(builder, make_session):
    session = await make_session()
    context = await builder.build(USER_ID, session)

    prompt = system_prompt(context)
    assert prompt.startswith(SUNDAY_SYSTEM_PROMPT)
    assert prompt.endswith(context.prompt)
