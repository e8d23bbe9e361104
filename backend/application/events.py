"""Report lifecycle events and the async event bus that fans them out."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    REPORT_PROGRESS = "REPORT_PROGRESS"
    REPORT_COMPLETED = "REPORT_COMPLETED"
    REPORT_FAILED = "REPORT_FAILED"


@dataclass
class ReportEvent:
    event_type: EventType
    report_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))


Handler = Callable[[ReportEvent], Coroutine[Any, Any, None]]


class AsyncEventBus:
    """
    Buffers events in an asyncio.Queue and dispatches them to async handlers.

    ``publish_sync`` may be called from worker threads (report generation runs
    in the threadpool); it hops onto the loop captured by ``start``.
    """

    def __init__(self, maxsize: int = 1000):
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue[ReportEvent]] = None
        self._handlers: Dict[EventType, List[Handler]] = {}
        self._running = False
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def register_handler(self, event_type: EventType, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unregister_handler(self, event_type: EventType, handler: Handler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event: ReportEvent) -> None:
        if self._queue is not None:
            await self._queue.put(event)

    def _enqueue(self, event: ReportEvent) -> bool:
        queue = self._queue
        if queue.full():
            # drop the oldest event
            queue.get_nowait()
        queue.put_nowait(event)
        return True

    def publish_sync(self, event: ReportEvent) -> bool:
        """Enqueue from any thread. Returns False when the bus is not running."""
        if not self._running or self._loop is None or self._queue is None:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            return self._enqueue(event)
        self._loop.call_soon_threadsafe(self._enqueue, event)
        return True

    async def _dispatch(self, event: ReportEvent) -> None:
        for handler in list(self._handlers.get(event.event_type, [])):
            try:
                await handler(event)
            except Exception as exc:  # noqa: BLE001
                logger.error("Handler error for %s: %s", event.event_type.value, exc)

    async def _drain(self) -> None:
        queue = self._queue
        while self._running:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            await self._dispatch(event)
            queue.task_done()

    async def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._running = True
        self._worker = self._loop.create_task(self._drain())
        logger.info("Event bus started")

    async def stop(self) -> None:
        self._running = False
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        logger.info("Event bus stopped")

    def pending_count(self) -> int:
        return 0 if self._queue is None else self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._running
