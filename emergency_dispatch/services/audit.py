"""
Best-effort audit trail for assessments and dispatch decisions.

Producers enqueue events without blocking; a background consumer task writes
them to the audit logger and an optional sink. A full queue drops the event
and counts it instead of slowing the caller down.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Any, Callable, Dict, Optional
import structlog

from emergency_dispatch.core.logging import get_audit_logger, get_correlation_id

logger = structlog.get_logger(__name__)

AuditSink = Callable[[Dict[str, Any]], Any]


class AuditTrail:
    """Bounded, non-blocking audit event queue with a consumer task."""

    def __init__(self, max_size: int = 1000, sink: Optional[AuditSink] = None):
        """
        Initialize the audit trail.

        Args:
            max_size: Maximum number of events waiting for the consumer
            sink: Optional callable (sync or async) receiving every event
        """
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._sink = sink
        self._consumer_task: Optional[asyncio.Task] = None
        self._audit_logger = get_audit_logger()
        self.recorded = 0
        self.dropped = 0
        self.processed = 0
        self.sink_failures = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    def record(self, event_type: str, **payload: Any) -> bool:
        """
        Enqueue an audit event. Never blocks and never raises.

        Returns:
            True if the event was queued, False if it was dropped
        """
        event = {
            "event_type": event_type,
            "recorded_at": datetime.utcnow().isoformat(),
            "correlation_id": get_correlation_id(),
            **payload,
        }
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Audit queue full, event dropped",
                event_type=event_type,
                dropped_total=self.dropped,
            )
            return False

        self.recorded += 1
        return True

    async def _write(self, event: Dict[str, Any]) -> None:
        self._audit_logger.info("Audit event", **event)
        if self._sink is not None:
            try:
                result = self._sink(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.sink_failures += 1
                logger.error(
                    "Audit sink failed",
                    event_type=event.get("event_type"),
                    error=str(e),
                    exc_info=True,
                )
        self.processed += 1

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._write(event)
            finally:
                self._queue.task_done()

    async def flush(self) -> int:
        """Write every queued event now. Returns how many were written."""
        written = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._write(event)
            finally:
                self._queue.task_done()
            written += 1
        return written

    async def start(self) -> None:
        """Start the background consumer task."""
        if self.is_running:
            logger.warning("Audit consumer already running")
            return

        self._consumer_task = asyncio.create_task(self._consume())
        logger.info("Audit consumer started", queue_size=self._queue.maxsize)

    async def stop(self) -> None:
        """Drain queued events and stop the consumer task."""
        if self.is_running:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
        self._consumer_task = None

        drained = await self.flush()
        logger.info(
            "Audit consumer stopped",
            drained=drained,
            processed=self.processed,
            dropped=self.dropped,
        )
