"""
groupguard.services.event_pump — Ordered event delivery
========================================================

Every producer (the log watcher, the enrichment worker, the HTTP ingest
route) pushes presence events into one :class:`asyncio.Queue`.  A single
consumer task drains it into :meth:`OccupancyTracker.apply`, so the
tracker sees exactly one ordered stream no matter how many producers
there are.

``submit`` is for coroutines on the pump's loop; ``submit_threadsafe`` is
for threads such as a file watcher.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from groupguard.engine.events import PresenceEvent
from groupguard.engine.occupancy import OccupancyTracker

logger = logging.getLogger(__name__)


class PresenceEventSource(Protocol):
    """A push-only producer.  Must emit ``SessionEnded`` when the watched
    process exits."""

    def start(self, emit: Callable[[PresenceEvent], None]) -> None: ...

    def stop(self) -> None: ...


class EventPump:
    def __init__(self, tracker: OccupancyTracker) -> None:
        self._tracker = tracker
        self._queue: asyncio.Queue[PresenceEvent | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._sources: list[PresenceEventSource] = []
        self.processed = 0

    # -- lifecycle -----------------------------------------------------------
    def start(self) -> None:
        """Start the consumer task on the running loop."""
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._consume(), name="groupguard-event-pump")
        logger.info("Event pump started")

    async def stop(self) -> None:
        """Stop sources, drain what is queued, then stop the consumer."""
        for source in self._sources:
            try:
                source.stop()
            except Exception:
                logger.exception("Presence source %r failed to stop", source)
        self._sources.clear()

        if self._task is None:
            return
        await self._queue.put(None)
        await self._task
        self._task = None
        logger.info("Event pump stopped after %d events", self.processed)

    def attach(self, source: PresenceEventSource) -> None:
        """Start *source*, wiring its output into this pump."""
        self._sources.append(source)
        source.start(self.submit_threadsafe)

    # -- producers -----------------------------------------------------------
    def submit(self, event: PresenceEvent) -> None:
        self._queue.put_nowait(event)

    def submit_threadsafe(self, event: PresenceEvent) -> None:
        if self._loop is None:
            raise RuntimeError("Event pump is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def join(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    # -- consumer ------------------------------------------------------------
    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                self._tracker.apply(event)
                self.processed += 1
            except Exception:
                logger.exception("Failed to apply %r", event)
            finally:
                self._queue.task_done()
