"""
Tests for the background task queue.
"""

from unittest.mock import AsyncMock

import pytest

from taleweaver.engine.tasks import BackgroundTaskQueue


class TestBackgroundTaskQueue:
    """Test retries, failure accounting and join"""

    @pytest.mark.asyncio
    async def test_successful_job(self):
        queue = BackgroundTaskQueue(retry_delay=0)
        job = AsyncMock(return_value="done")

        queue.submit(job, label="extract")
        await queue.join()

        job.assert_awaited_once()
        assert queue.completed == 1
        assert queue.failed == 0
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_failed_job_retried_then_succeeds(self):
        queue = BackgroundTaskQueue(max_attempts=2, retry_delay=0)
        job = AsyncMock(side_effect=[RuntimeError("flaky"), "done"])

        task = queue.submit(job)
        assert await task is True
        assert job.await_count == 2
        assert queue.completed == 1

    @pytest.mark.asyncio
    async def test_exhausted_job_counted_as_failed(self):
        queue = BackgroundTaskQueue(max_attempts=3, retry_delay=0)
        job = AsyncMock(side_effect=RuntimeError("broken"))

        task = queue.submit(job)
        await queue.join()

        assert await task is False
        assert job.await_count == 3
        assert queue.failed == 1
        assert queue.completed == 0

    @pytest.mark.asyncio
    async def test_join_waits_for_jobs_scheduled_meanwhile(self):
        queue = BackgroundTaskQueue(retry_delay=0)
        follow_up = AsyncMock()

        async def first():
            queue.submit(follow_up, label="follow-up")

        queue.submit(first, label="first")
        await queue.join()

        follow_up.assert_awaited_once()
        assert queue.completed == 2
