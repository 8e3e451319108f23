"""In-process worker pool for job execution tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from nebula.core.logging_safety import safe_log_identifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskFailure:
    key: str
    error: BaseException


class WorkerPool:
    """Runs submitted coroutines as tracked asyncio tasks.

    Tasks are held by reference until they finish, concurrency is bounded by a
    semaphore, and any exception that escapes a task is logged and kept in
    ``failures`` instead of disappearing with an unawaited future.
    """

    def __init__(self, *, concurrency: int, name: str = "jobs") -> None:
        self._name = name
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self.failures: list[TaskFailure] = []

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, key: str, coro: Coroutine[Any, Any, None], *, delay: float = 0.0) -> asyncio.Task[None]:
        """Schedule ``coro``; a ``delay`` is waited out before a worker slot is taken."""
        if self._closed:
            coro.close()
            raise RuntimeError(f"Worker pool {self._name} is shut down")

        task = asyncio.get_running_loop().create_task(self._run(coro, delay), name=f"{self._name}:{key}")
        self._tasks.add(task)
        task.add_done_callback(lambda finished: self._on_done(key, finished))
        return task

    async def _run(self, coro: Coroutine[Any, Any, None], delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            async with self._semaphore:
                await coro
        finally:
            coro.close()

    def _on_done(self, key: str, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.failures.append(TaskFailure(key=key, error=error))
        logger.error(
            "worker.task_failed pool=%s key=%s reason=%s",
            self._name,
            safe_log_identifier(key, prefix="key"),
            type(error).__name__,
            exc_info=error,
        )

    async def drain(self) -> None:
        """Wait until every submitted task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("worker.shutdown pool=%s cancelled=%s", self._name, len(tasks))
