"""Fire-and-forget background tasks keyed by the record they produce."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundDispatcher:
    """Runs best-effort coroutines without making the caller wait.

    At most one task per key is in flight. Finished tasks are forgotten, so a
    later poll can trigger the same key again.
    """

    def __init__(self, max_concurrency: int = 16) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def spawn(self, key: str, factory: Callable[[], Awaitable[Any]]) -> bool:
        """Schedule ``factory()`` under ``key``; returns ``False`` if already running."""
        if key in self._tasks:
            logger.debug("dispatch.in_flight", key=key)
            return False
        task = asyncio.get_running_loop().create_task(self._run(key, factory))
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel every scheduled task and wait for the cancellations to land."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("dispatch.cancel_all", pending=len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            return await factory()

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("dispatch.task_failed", key=key, error=repr(exc))
