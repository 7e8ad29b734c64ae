"""Tests for the per-user serial background dispatcher."""

import asyncio

import pytest

from sunday.memory import CompactionDispatcher


@pytest.mark.asyncio
async def test_jobs_for_same_user_run_serially_in_order():
    dispatcher = CompactionDispatcher()
    events: list[str] = []
    running = 0
    max_running = 0

    def job(name):
        async def run():
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            events.append(f"start {name}")
            await asyncio.sleep(0.01)
            events.append(f"end {name}")
            running -= 1

        return run

    dispatcher.dispatch("u1", "a", job("a"))
    dispatcher.dispatch("u1", "b", job("b"))
    dispatcher.dispatch("u1", "c", job("c"))
    await dispatcher.drain()

    assert events == ["start a", "end a", "start b", "end b", "start c", "end c"]
    assert max_running == 1
    assert dispatcher.pending("u1") == 0


@pytest.mark.asyncio
async def test_different_users_run_concurrently():
    dispatcher = CompactionDispatcher()
    both_started = asyncio.Event()
    started: set[str] = set()

    def job(user):
        async def run():
            started.add(user)
            if len(started) == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)

        return run

    dispatcher.dispatch("u1", "x", job("u1"))
    dispatcher.dispatch("u2", "x", job("u2"))
    await dispatcher.drain()

    assert started == {"u1", "u2"}


@pytest.mark.asyncio
async def test_failing_job_is_logged_and_queue_continues(caplog):
    dispatcher = CompactionDispatcher()
    ran: list[str] = []

    async def boom():
        raise RuntimeError("model down")

    async def ok():
        ran.append("ok")

    dispatcher.dispatch("u1", "boom", boom)
    dispatcher.dispatch("u1", "ok", ok)
    await dispatcher.drain()

    assert ran == ["ok"]
    assert "model down" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_does_not_wait_for_job():
    dispatcher = CompactionDispatcher()
    release = asyncio.Event()

    async def slow():
        await release.wait()

    dispatcher.dispatch("u1", "slow", slow)
    dispatcher.dispatch("u1", "slow-2", slow)
    await asyncio.sleep(0)

    assert dispatcher.pending("u1") == 1
    release.set()
    await dispatcher.drain()
    assert dispatcher.pending("u1") == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_work():
    dispatcher = CompactionDispatcher()
    never = asyncio.Event()

    async def stuck():
        await never.wait()

    dispatcher.dispatch("u1", "stuck", stuck)
    await asyncio.sleep(0)
    await dispatcher.shutdown()

    assert dispatcher.pending("u1") == 0
