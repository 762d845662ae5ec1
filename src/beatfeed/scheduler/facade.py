"""Process-wide access point for the import scheduler.

Initialization (loading the state document) happens lazily on first use and
exactly once per process, even when several requests arrive concurrently. A
failed initialization is not cached, so the next caller retries it.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from .service import ImportScheduler

logger = logging.getLogger(__name__)


class SchedulerHolder:
    """Lazily initialized, shared :class:`ImportScheduler`.

    Also keeps references to fire-and-forget background runs so they are not
    garbage collected mid-flight and can be cancelled on shutdown.
    """

    def __init__(self, factory: Callable[[], ImportScheduler]) -> None:
        """Initialize the holder.

        Args:
            factory: Builds an uninitialized scheduler wired to its store,
                ledger and executor.
        """
        self._factory = factory
        self._scheduler: ImportScheduler | None = None
        self._lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def initialized(self) -> bool:
        return self._scheduler is not None

    async def get(self) -> ImportScheduler:
        """Return the shared scheduler, initializing it on first use.

        Raises:
            StoreError: If the state document cannot be loaded or saved.
        """
        if self._scheduler is not None:
            return self._scheduler

        async with self._lock:
            if self._scheduler is None:
                scheduler = self._factory()
                await scheduler.initialize()
                self._scheduler = scheduler
        return self._scheduler

    def peek(self) -> ImportScheduler:
        """Return the loaded scheduler, or a default-state one, without initializing."""
        if self._scheduler is not None:
            return self._scheduler
        return self._factory()

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background, logging any exception it raises."""

        async def task_wrapper():
            try:
                await coro
            except asyncio.CancelledError:
                logger.info(f"Background task {name} was cancelled")
                raise
            except Exception as e:
                logger.exception(f"Background task {name} failed: {e}")

        task = asyncio.create_task(task_wrapper(), name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.debug(f"Started background task {name}")
        return task

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._background_tasks if not task.done())

    async def shutdown(self) -> None:
        """Cancel background runs that are still in flight."""
        for task in list(self._background_tasks):
            if not task.done():
                logger.info(f"Cancelling background task {task.get_name()}")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._background_tasks.clear()

    def reset(self) -> None:
        """Forget the loaded scheduler so the next ``get()`` reloads state."""
        self._scheduler = None
