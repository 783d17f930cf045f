"""
backend/matchboard/services/event_bus.py

Purpose:
    In-process event bus carrying read-path suggestions (e.g. "this match
    should be finished") to their writers. Publishing never blocks the
    request: events go onto a bounded ingress queue and are fanned out to
    per-handler worker queues. Overflow is dropped and counted.

Dependencies:
    - asyncio
    - matchboard.config
    - matchboard.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from matchboard.config import settings
from matchboard.services.event_models import BaseEvent, normalize_event_time
from matchboard.utils import utcnow

logger = logging.getLogger("matchboard.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]


@dataclass
class _Subscription:
    event_type: str
    handler_name: str
    handler: AsyncEventHandler
    concurrency: int
    queue: asyncio.Queue[BaseEvent] | None = None
    workers: list[asyncio.Task] = field(default_factory=list)
    handled: int = 0
    failed: int = 0
    dropped: int = 0


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))

        self._ingress: asyncio.Queue[BaseEvent] | None = None
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False

        self._published = 0
        self._dropped = 0
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))

    @property
    def running(self) -> bool:
        return self._running

    def _subs(self):
        for subs in self._subscriptions.values():
            yield from subs

    async def start(self) -> None:
        if self._running:
            return
        # Queues are created here so they belong to the serving loop.
        self._ingress = asyncio.Queue(maxsize=self._ingress_maxsize)
        self._running = True
        for sub in self._subs():
            self._start_workers(sub)
        self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
        logger.info("Event bus started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks = [self._dispatcher_task] if self._dispatcher_task is not None else []
        self._dispatcher_task = None
        for sub in self._subs():
            tasks.extend(sub.workers)
            sub.workers = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Event bus stopped")

    def subscribe(
        self,
        event_type: str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int | None = None,
    ) -> None:
        sub = _Subscription(
            event_type=event_type,
            handler_name=handler_name,
            handler=handler,
            concurrency=max(1, int(concurrency or self._default_concurrency)),
        )
        self._subscriptions[event_type].append(sub)
        if self._running:
            self._start_workers(sub)

    def _start_workers(self, sub: _Subscription) -> None:
        sub.queue = asyncio.Queue(maxsize=self._handler_maxsize)
        sub.workers = [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.handler_name}_{idx}")
            for idx in range(sub.concurrency)
        ]

    async def publish(self, event: BaseEvent) -> None:
        event = normalize_event_time(event)
        if not self._running or self._ingress is None:
            self._dropped += 1
            logger.debug("Event bus not running; dropping event_type=%s", event.event_type)
            return
        try:
            self._ingress.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("Event bus ingress queue full; dropping event_type=%s", event.event_type)
            return
        self._published += 1

    async def drain(self) -> None:
        """Wait until every published event has been handled. Used on shutdown and in tests."""
        if self._ingress is None:
            return
        await self._ingress.join()
        for sub in self._subs():
            if sub.queue is not None:
                await sub.queue.join()

    def stats(self) -> dict[str, Any]:
        handlers = {
            f"{sub.event_type}:{sub.handler_name}": {
                "queue_depth": sub.queue.qsize() if sub.queue is not None else 0,
                "handled": sub.handled,
                "failed": sub.failed,
                "dropped": sub.dropped,
            }
            for sub in self._subs()
        }
        return {
            "enabled": bool(settings.EVENT_BUS_ENABLED),
            "running": self._running,
            "published_total": self._published,
            "handled_total": sum(h["handled"] for h in handlers.values()),
            "failed_total": sum(h["failed"] for h in handlers.values()),
            "dropped_total": self._dropped + sum(h["dropped"] for h in handlers.values()),
            "ingress_queue_depth": self._ingress.qsize() if self._ingress is not None else 0,
            "handlers": handlers,
            "recent_errors": list(self._errors),
        }

    async def _dispatch_loop(self) -> None:
        while self._running:
            event = await self._ingress.get()
            try:
                for sub in self._subscriptions.get(event.event_type, []):
                    try:
                        sub.queue.put_nowait(event)
                    except asyncio.QueueFull:
                        sub.dropped += 1
                        logger.warning(
                            "Event bus handler queue full; dropping event_type=%s handler=%s",
                            event.event_type,
                            sub.handler_name,
                        )
            finally:
                self._ingress.task_done()

    async def _handler_loop(self, sub: _Subscription) -> None:
        queue = sub.queue
        while self._running:
            event = await queue.get()
            try:
                await sub.handler(event)
                sub.handled += 1
            except Exception as exc:
                sub.failed += 1
                self._errors.append({
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "handler_name": sub.handler_name,
                    "correlation_id": event.correlation_id,
                    "ts": utcnow().isoformat(),
                    "error": str(exc),
                })
                logger.error(
                    "Event handler failed event_id=%s handler=%s correlation_id=%s",
                    event.event_id,
                    sub.handler_name,
                    event.correlation_id,
                    exc_info=True,
                )
            finally:
                queue.task_done()


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
)
