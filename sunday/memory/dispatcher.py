"""Fire-and-forget background work, serialized per user."""

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class CompactionDispatcher:
    """Per-user single-writer task queue.

    dispatch() returns immediately. Each user has at most one worker task
    draining its queue in order, so two compactions for the same user never
    overlap inside this process. Every job error is caught and logged in the
    worker; callers never observe results.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[tuple[str, Job]]] = defaultdict(deque)
        self._workers: dict[str, asyncio.Task] = {}

    def dispatch(self, user_id: str, job_name: str, job: Job) -> None:
        """Enqueue a job for the user and make sure a worker is running.

        Args:
            user_id: Queue key
            job_name: Label used in logs
            job: Zero-argument coroutine factory
        """
        self._queues[user_id].append((job_name, job))
        worker = self._workers.get(user_id)
        if worker is None or worker.done():
            self._workers[user_id] = asyncio.create_task(
                self._drain(user_id), name=f"compaction-{user_id}"
            )
        logger.debug(f"Dispatched {job_name} for user {user_id} (pending={self.pending(user_id)})")

    def pending(self, user_id: str) -> int:
        """Number of jobs waiting (not counting the one running)."""
        return len(self._queues.get(user_id, ()))

    async def _drain(self, user_id: str) -> None:
        queue = self._queues[user_id]
        try:
            while queue:
                job_name, job = queue.popleft()
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Background job {job_name} failed for user {user_id}: {e}")
        finally:
            if not queue:
                self._queues.pop(user_id, None)
            if self._workers.get(user_id) is asyncio.current_task():
                del self._workers[user_id]

    async def drain(self) -> None:
        """Wait until every queued job has run."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight work (process exit)."""
        for worker in list(self._workers.values()):
            worker.cancel()
        await asyncio.gather(*list(self._workers.values()), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
