"""
Background task queue for work that runs after a turn's critical path.

Jobs are coroutine factories. A failed job is retried up to ``max_attempts``
times (at-least-once); failures never propagate into the request that
scheduled the job.
"""

import asyncio
from typing import Any, Awaitable, Callable, Set

from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class BackgroundTaskQueue:
    def __init__(self, max_attempts: int = 2, retry_delay: float = 0.5):
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, job: JobFactory, label: str = "job") -> asyncio.Task:
        """Schedule ``job`` on the running loop and return its task."""
        task = asyncio.create_task(self._run(job, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job: JobFactory, label: str) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await job()
                self.completed += 1
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt == self.max_attempts:
                    self.failed += 1
                    logger.error(
                        f"[Tasks] {label} failed after {attempt} attempt(s): {e}", exc_info=True
                    )
                    return False
                logger.warning(f"[Tasks] {label} attempt {attempt} failed, retrying: {e}")
                if self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay)
        return False

    async def join(self) -> None:
        """Wait until every scheduled job, including ones scheduled meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
