"""Detached background tasks whose failures are logged, never raised."""
import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def spawn_background(coro: Awaitable, name: str) -> Optional[asyncio.Task]:
    """
    Start a coroutine as a detached task.

    Args:
        coro: Coroutine to run
        name: Task name used in log messages

    Returns:
        The created task, or None if no event loop is running
    """
    try:
        task = asyncio.get_running_loop().create_task(coro, name=name)
    except RuntimeError:
        logger.warning(f"No running event loop for background task: {name}")
        coro.close()
        return None

    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    logger.debug(f"Created background task: {name}")
    return task


def _on_task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.debug(f"Background task cancelled: {task.get_name()}")
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            f"Background task failed: {task.get_name()}: {exc}",
            exc_info=exc,
        )


async def drain_background_tasks() -> None:
    """Wait for every pending background task (used on shutdown and in tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
