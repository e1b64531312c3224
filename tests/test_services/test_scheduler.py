"""
Tests for the asyncio scheduler.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from emergency_dispatch.services.scheduler import AsyncioScheduler


class TestAsyncioScheduler:
    """Tests for AsyncioScheduler."""

    @pytest.mark.asyncio
    async def test_scheduled_job_runs(self):
        """Test the bound executor is called after the delay."""
        executor = AsyncMock()
        scheduler = AsyncioScheduler()
        scheduler.bind(executor)

        handle = await scheduler.schedule("job-1", 0.01)
        assert scheduler.pending_handles() == [handle]

        await asyncio.sleep(0.05)

        executor.assert_awaited_once_with("job-1")
        assert scheduler.pending_handles() == []

    @pytest.mark.asyncio
    async def test_cancel_prevents_execution(self):
        """Test a cancelled task never runs."""
        executor = AsyncMock()
        scheduler = AsyncioScheduler()
        scheduler.bind(executor)

        handle = await scheduler.schedule("job-1", 0.05)
        assert await scheduler.cancel(handle.id)
        await asyncio.sleep(0.1)

        executor.assert_not_awaited()
        assert not await scheduler.cancel(handle.id)

    @pytest.mark.asyncio
    async def test_executor_errors_are_contained(self):
        """Test an executor failure is logged, not raised."""
        scheduler = AsyncioScheduler()
        scheduler.bind(AsyncMock(side_effect=RuntimeError("boom")))

        handle = await scheduler.schedule("job-1", 60)
        await scheduler.execute(handle)

        assert scheduler.pending_handles() == []
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self):
        """Test shutdown cancels all pending tasks."""
        executor = AsyncMock()
        scheduler = AsyncioScheduler()
        scheduler.bind(executor)
        await scheduler.schedule("job-1", 60)
        await scheduler.schedule("job-2", 60)

        await scheduler.shutdown()

        assert scheduler.pending_handles() == []
        executor.assert_not_awaited()
