"""
Detached background tasks that outlive the request which spawned them.
"""
import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """
    Holds strong references to fire-and-forget asyncio tasks.

    Tasks are not tied to any request scope: a response can be sent while
    the task keeps running. Failures are logged and end with the task;
    nothing is re-raised to whoever spawned it.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait for all pending tasks (including ones spawned while waiting).
        Tasks still running after ``timeout`` seconds are cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, not_done = await asyncio.wait(set(self._tasks), timeout=remaining)
            self._tasks.difference_update(done)
            if not_done and deadline is not None and loop.time() >= deadline:
                logger.warning(f"Cancelling {len(not_done)} background task(s) still running at shutdown")
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                return
