"""Background task runner for work detached from the request path.

Sync triggers and enrichment workers return to the caller immediately and
continue in the background. Each submitted coroutine becomes a named
asyncio task whose outcome is logged on completion.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Owns background asyncio tasks for the lifetime of the application.

    Keeps a reference to each running task and logs how it ended.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule a coroutine as a named background task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("tasks.submitted", task=name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        name = task.get_name()

        if task.cancelled():
            logger.info("tasks.cancelled", task=name)
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "tasks.failed",
                task=name,
                error=str(exc),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        else:
            logger.info("tasks.completed", task=name)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("tasks.shutdown", cancelled=len(tasks))
