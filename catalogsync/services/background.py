"""
Supervised background tasks.

Work started by an HTTP trigger outlives the request. Tasks are kept
referenced until they finish, their failures are logged, and any still
running are cancelled on application shutdown.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Holds references to running background tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Started background task %s", name)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task %s cancelled", task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(error), error, error.__traceback__),
            )
        else:
            logger.info("Background task %s finished", task.get_name())

    async def join(self) -> None:
        """Wait for every task running now to finish."""
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


supervisor = TaskSupervisor()
