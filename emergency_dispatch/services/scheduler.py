"""
Deferred job resumption for wait steps.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol
import structlog

from emergency_dispatch.models.dispatch import TaskHandle

logger = structlog.get_logger(__name__)

JobExecutor = Callable[[str], Awaitable[Any]]


class Scheduler(Protocol):
    """Resumes a dispatch job after a delay. Delivery is at-least-once."""

    def bind(self, executor: JobExecutor) -> None:
        ...

    async def schedule(self, job_id: str, delay_seconds: float) -> TaskHandle:
        ...

    async def cancel(self, handle_id: str) -> bool:
        ...

    async def execute(self, handle: TaskHandle) -> None:
        ...


class AsyncioScheduler:
    """In-process scheduler built on asyncio tasks."""

    def __init__(self):
        self._executor: Optional[JobExecutor] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._handles: Dict[str, TaskHandle] = {}

    def bind(self, executor: JobExecutor) -> None:
        """Set the callable that re-enters job execution."""
        self._executor = executor

    async def schedule(self, job_id: str, delay_seconds: float) -> TaskHandle:
        """
        Schedule a job resumption.

        Args:
            job_id: Job to resume
            delay_seconds: Seconds to wait before resuming

        Returns:
            Handle that can be passed to cancel()
        """
        handle = TaskHandle(
            job_id=job_id,
            run_at=datetime.utcnow() + timedelta(seconds=delay_seconds),
        )
        self._handles[handle.id] = handle
        self._tasks[handle.id] = asyncio.create_task(self._run_later(handle, delay_seconds))

        logger.info(
            "Job resumption scheduled",
            job_id=job_id,
            task_id=handle.id,
            run_at=handle.run_at.isoformat(),
        )
        return handle

    async def _run_later(self, handle: TaskHandle, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        await self.execute(handle)

    async def execute(self, handle: TaskHandle) -> None:
        """Run a scheduled resumption now."""
        task = self._tasks.pop(handle.id, None)
        self._handles.pop(handle.id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        if self._executor is None:
            logger.warning("No executor bound, scheduled task ignored", task_id=handle.id)
            return

        try:
            await self._executor(handle.job_id)
        except Exception as e:
            logger.error(
                "Scheduled job execution failed",
                job_id=handle.job_id,
                task_id=handle.id,
                error=str(e),
                exc_info=True,
            )

    async def cancel(self, handle_id: str) -> bool:
        """
        Cancel a scheduled resumption.

        Returns:
            True if a pending task was cancelled
        """
        self._handles.pop(handle_id, None)
        task = self._tasks.pop(handle_id, None)
        if task is None or task.done() or task is asyncio.current_task():
            return False

        task.cancel()
        logger.info("Scheduled task cancelled", task_id=handle_id)
        return True

    def pending_handles(self) -> List[TaskHandle]:
        return list(self._handles.values())

    async def shutdown(self) -> None:
        """Cancel every pending task."""
        for handle_id in list(self._tasks):
            await self.cancel(handle_id)
