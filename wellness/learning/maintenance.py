"""
Background Maintenance

Fire-and-forget work for the engine: durable writes, the periodic learning
update and the cache-cleanup sweep. Each job runs as its own asyncio task
with bounded retry. Failures are logged and dropped, never surfaced to the
caller that spawned them.

Usage:
    tasks = BackgroundTasks(max_retries=2, retry_delay=0.5)
    tasks.spawn(lambda: gateway.append_interaction(event), name="append_interaction")

    # Shutdown: bounded drain, then cancel whatever is left
    if not await tasks.drain(timeout=10):
        await tasks.cancel_all()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class BackgroundTasks:
    """Tracks spawned jobs so they can be drained or cancelled."""

    def __init__(self, max_retries: int = 2, retry_delay: float = 0.5):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._tasks: set[asyncio.Task] = set()
        self.failed = 0
        self.completed = 0

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def spawn(
        self,
        factory: JobFactory,
        name: str,
        retry: bool = True,
    ) -> asyncio.Task | None:
        """
        Schedule ``factory()`` in the background.

        Args:
            factory: Zero-arg callable returning a fresh awaitable per attempt
            name: Job name for logs
            retry: Retry failed attempts up to ``max_retries`` times

        Returns:
            The task, or None when no event loop is running
        """
        try:
            task = asyncio.get_running_loop().create_task(self._run(factory, name, retry), name=name)
        except RuntimeError:
            logger.warning(f"No running event loop, dropping background job '{name}'")
            return None

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, factory: JobFactory, name: str, retry: bool) -> Any:
        attempts = 1 + (self.max_retries if retry else 0)

        for attempt in range(1, attempts + 1):
            try:
                result = await factory()
                self.completed += 1
                return result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt < attempts:
                    logger.debug(f"Background job '{name}' attempt {attempt} failed: {e}, retrying")
                    await asyncio.sleep(self.retry_delay * attempt)
                else:
                    self.failed += 1
                    logger.warning(f"Background job '{name}' failed after {attempt} attempts: {e}")
        return None

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Wait for every pending job, including jobs spawned while draining.

        Args:
            timeout: Overall limit in seconds (None waits indefinitely)

        Returns:
            False if jobs were still running when the timeout expired
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return True

            remaining = None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False

            _, not_done = await asyncio.wait(pending, timeout=remaining)
            if not_done:
                return False

    async def cancel_all(self) -> int:
        """Cancel every pending job and wait for the cancellations to land."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)
