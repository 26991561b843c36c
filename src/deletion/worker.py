"""Background execution of deletion jobs.

The webhook acknowledges the platform immediately and hands the deletion
off here. Jobs are placed on an async queue and drained by a fixed pool of
worker tasks, so a slow purge never holds an HTTP request open.

Usage:
    worker = DeletionWorker(concurrency=2)
    await worker.start()                      # FastAPI lifespan startup
    await worker.submit(handler.process(event))
    await worker.stop()                       # drains pending jobs first
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

Job = Coroutine[Any, Any, Any]


class DeletionWorker:
    """Queue + N worker tasks. A failing job is logged and never stops a worker."""

    def __init__(self, concurrency: int = 1) -> None:
        self._concurrency = concurrency
        self._queue: asyncio.Queue[Job] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Start the worker tasks if not already running."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._work(index), name=f"deletion-worker-{index}")
            for index in range(self._concurrency)
        ]
        logger.info("Deletion worker started with %d tasks", self._concurrency)

    async def submit(self, job: Job) -> None:
        """Queue a job; starts the workers lazily if the lifespan has not."""
        if not self.running:
            await self.start()
        assert self._queue is not None
        await self._queue.put(job)
        logger.debug("Deletion job queued (pending=%d)", self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain remaining jobs, then cancel the worker tasks."""
        if self._queue is not None and self.running:
            await self._queue.join()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Jobs queued after the workers died are closed so they never warn as un-awaited.
        if self._queue is not None:
            while not self._queue.empty():
                self._queue.get_nowait().close()
                self._queue.task_done()

        self._tasks = []
        self._queue = None
        logger.info("Deletion worker stopped")

    async def _work(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await job
            except asyncio.CancelledError:
                logger.info("Deletion worker %d shutting down", index)
                queue.task_done()
                raise
            except Exception:
                logger.exception("Deletion job failed in worker %d", index)
            queue.task_done()
