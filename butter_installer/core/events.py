"""Non-blocking delivery of install events to a sink.

Producers (the download stream, the patch tool reader) call
``EventDispatcher.publish`` which only enqueues. A background task drains
the queue into the sink, so a slow sink delays delivery but never the
transfer itself. The queue is unbounded.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from butter_installer.core.types import (
    EventKind,
    GameVersion,
    InstallEvent,
    ProgressEvent,
)

logger = structlog.get_logger()

EventSink = Callable[[InstallEvent], Awaitable[Any] | Any]
ProgressCallback = Callable[[ProgressEvent], None]


class EventDispatcher:
    """Queue events for asynchronous delivery to a sink.

    Use as an async context manager; leaving the context waits until every
    queued event has been handed to the sink.

    Args:
        sink: Sync or async callable receiving each event
    """

    def __init__(self, sink: EventSink | None = None):
        self.sink = sink
        self._queue: asyncio.Queue[InstallEvent | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self.delivered = 0
        self.dropped = 0

    async def __aenter__(self) -> EventDispatcher:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start the drain task on the running loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._drain())

    async def aclose(self) -> None:
        """Deliver everything queued so far, then stop the drain task."""
        if self._task is None:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None

    def publish(self, event: InstallEvent) -> None:
        """Enqueue an event without waiting for the sink."""
        if self.sink is None:
            return
        self._queue.put_nowait(event)

    def progress(self, kind: EventKind = EventKind.INSTALL_PROGRESS) -> ProgressCallback:
        """Build a progress callback publishing on the given channel."""
        def _on_progress(event: ProgressEvent) -> None:
            self.publish(InstallEvent(kind=kind, progress=event))
        return _on_progress

    def started(self) -> None:
        self.publish(InstallEvent(kind=EventKind.INSTALL_STARTED))

    def finished(self, version: GameVersion) -> None:
        self.publish(InstallEvent(kind=EventKind.INSTALL_FINISHED, version=version))

    def error(self, message: str, kind: EventKind = EventKind.INSTALL_ERROR) -> None:
        self.publish(InstallEvent(kind=kind, message=message))

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                result = self.sink(event) if self.sink else None
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
            except Exception as e:
                # A failing sink never aborts the install
                self.dropped += 1
                logger.warning("event_delivery_failed", kind=event.kind.value, error=str(e))
