"""Async utilities and task management."""

import asyncio
import inspect
import logging
from typing import Optional, Set, Callable, Any, Coroutine

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Tracks background tasks so they can be cancelled together.

    Example:
        >>> manager = TaskManager()
        >>> task = await manager.create_task(monitor(), name="monitor")
        >>> await manager.cancel_all()
    """

    def __init__(self) -> None:
        """Initialize task manager."""
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._is_shutting_down = False

    async def create_task(
        self,
        coro: Coroutine,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Create and track a background task.

        Args:
            coro: Coroutine to run
            name: Optional task name for debugging

        Returns:
            Created task object

        Raises:
            RuntimeError: If manager is shutting down
        """
        if self._is_shutting_down:
            coro.close()
            raise RuntimeError("Task manager is shutting down")

        async with self._lock:
            task = asyncio.create_task(coro, name=name)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

            logger.debug(f"Created task: {name or task.get_name()}")
            return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Task {task.get_name()} failed: {type(exc).__name__}: {exc}")

    async def cancel_all(self) -> None:
        """
        Cancel all tracked tasks and wait for them to finish.

        A task calling this on its own manager is skipped rather than awaited.
        """
        self._is_shutting_down = True
        current = asyncio.current_task()

        async with self._lock:
            tasks = [t for t in self._tasks if t is not current]
            if not tasks:
                logger.debug("No tasks to cancel")
                return

            logger.debug(f"Cancelling {len(tasks)} task(s)")

            for task in tasks:
                if not task.done():
                    task.cancel()

            await asyncio.gather(*tasks, return_exceptions=True)

            for task in tasks:
                self._tasks.discard(task)
            logger.debug("All tasks cancelled")


async def call_handler(handler: Callable, *args: Any) -> Any:
    """
    Invoke a sync or async handler and return its result.

    Args:
        handler: Plain function, coroutine function or callable returning an awaitable
        *args: Arguments passed to the handler
    """
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
