"""Fire-and-forget dispatch for work the caller never awaits."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTasks:
    """Tracks detached tasks so they are not garbage collected mid-flight.

    Exceptions raised by a detached task are logged in its done callback and
    then discarded; they never reach the code that dispatched the task.

    Usage:
        tasks = BackgroundTasks()
        tasks.spawn(fetch_something(), name="fetch-something")
        ...
        await tasks.drain()  # on shutdown or in tests
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("background task cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.warning(
                "background task failed",
                task=task.get_name(),
                error=repr(exc),
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every task, including ones spawned meanwhile, settles."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning("drain timed out", pending=len(self._tasks))
                return
            await asyncio.wait(set(self._tasks), timeout=remaining)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
