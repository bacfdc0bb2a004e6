"""Background task registry: tracks asyncio.Tasks for logging and shutdown cleanup."""

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Registry for detached background tasks.

    - Holds a strong reference so running tasks are not garbage collected
    - Logs exceptions from tasks that would otherwise be silently swallowed
    - Cancels whatever is still running on shutdown
    """

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}

    def create_task(self, coro: Coroutine, *, name: str) -> asyncio.Task:
        """Create and track a background task.

        Args:
            coro: The coroutine to run.
            name: Unique name (e.g., "sync-<run_id>").

        Returns:
            The created asyncio.Task.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._on_task_done(t, name))
        logger.info(f"Background task created: '{name}'")
        return task

    def _on_task_done(self, task: asyncio.Task, name: str):
        self._tasks.pop(name, None)
        if task.cancelled():
            logger.info(f"Background task '{name}' was cancelled")
        elif exc := task.exception():
            logger.error(f"Background task '{name}' failed: {exc}", exc_info=exc)
        else:
            logger.info(f"Background task '{name}' completed")

    @property
    def active_tasks(self) -> dict[str, asyncio.Task]:
        return dict(self._tasks)

    async def cancel_all(self, timeout: float = 10.0):
        """Cancel all active tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"Cancelling {len(tasks)} background tasks...")
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)
        logger.info("Background task cleanup complete")


task_registry = TaskRegistry()
