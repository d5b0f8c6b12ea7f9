"""
Background Task Registry

Owns every long-running task spawned by a service so shutdown can cancel and
join them instead of leaving orphaned loops behind.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional


logger = logging.getLogger(__name__)


class TaskRegistry:
    """Tracks named asyncio tasks and cancels them on shutdown."""

    def __init__(self, name: str = "tasks"):
        self.name = name
        self._tasks: Dict[str, asyncio.Task] = {}
        self._closed = False

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Start ``coro`` as a tracked task.

        Args:
            name: Unique task name; an existing live task with the same name
                is cancelled and replaced
            coro: Coroutine to run

        Returns:
            The created task
        """
        if self._closed:
            coro.close()
            raise RuntimeError(f"Task registry '{self.name}' is shut down")

        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            existing.cancel()

        task = asyncio.create_task(coro, name=f"{self.name}:{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._on_done(n, t))
        return task

    def spawn_periodic(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ) -> asyncio.Task:
        """
        Run ``func`` every ``interval`` seconds until cancelled.

        Failures of a single tick are logged and the loop keeps going.
        """
        async def _loop():
            if not run_immediately:
                await asyncio.sleep(interval)
            while True:
                try:
                    await func()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Periodic task '{name}' failed: {e}")
                await asyncio.sleep(interval)

        return self.spawn(name, _loop())

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task '{name}' crashed: {error}")

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, name: str) -> Optional[asyncio.Task]:
        return self._tasks.get(name)

    def names(self) -> List[str]:
        return sorted(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel all tracked tasks and wait for them to finish."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.debug(f"Task registry '{self.name}' stopped {len(tasks)} task(s)")

    def reopen(self) -> None:
        """Allow spawning again after a shutdown."""
        self._closed = False
