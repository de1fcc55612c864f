"""Tests for butter_installer.core.events module."""

import asyncio

from conftest import RecordingSink

from butter_installer.core.events import EventDispatcher
from butter_installer.core.types import (
    EventKind,
    GameVersion,
    InstallEvent,
    ProgressEvent,
    ProgressPhase,
)


class TestEventDispatcher:
    """Test queued event delivery."""

    def test_delivers_in_order(self, sink: RecordingSink, sample_version: GameVersion):
        async def run():
            async with EventDispatcher(sink) as events:
                events.started()
                progress = events.progress()
                progress(ProgressEvent(phase=ProgressPhase.PWR_DOWNLOAD, percent=10))
                progress(ProgressEvent(phase=ProgressPhase.PWR_DOWNLOAD, percent=100))
                events.finished(sample_version)
            return events

        events = asyncio.run(run())

        assert sink.kinds() == [
            EventKind.INSTALL_STARTED,
            EventKind.INSTALL_PROGRESS,
            EventKind.INSTALL_PROGRESS,
            EventKind.INSTALL_FINISHED,
        ]
        assert [p.percent for p in sink.progress(ProgressPhase.PWR_DOWNLOAD)] == [10, 100]
        assert sink.events[-1].version == sample_version
        assert events.delivered == 4

    def test_publish_does_not_wait_for_slow_sink(self):
        """Publishing returns immediately even while the sink is blocked."""
        received: list[InstallEvent] = []

        async def run():
            gate = asyncio.Event()

            async def slow_sink(event: InstallEvent) -> None:
                await gate.wait()
                received.append(event)

            async with EventDispatcher(slow_sink) as events:
                for _ in range(100):
                    events.publish(InstallEvent(kind=EventKind.INSTALL_PROGRESS))
                await asyncio.sleep(0)
                assert received == []
                gate.set()

        asyncio.run(run())
        assert len(received) == 100

    def test_async_sink(self):
        received: list[EventKind] = []

        async def sink(event: InstallEvent) -> None:
            await asyncio.sleep(0)
            received.append(event.kind)

        async def run():
            async with EventDispatcher(sink) as events:
                events.error("boom")

        asyncio.run(run())
        assert received == [EventKind.INSTALL_ERROR]

    def test_failing_sink_is_isolated(self):
        calls: list[EventKind] = []

        def sink(event: InstallEvent) -> None:
            calls.append(event.kind)
            if event.kind == EventKind.INSTALL_STARTED:
                raise RuntimeError("sink broke")

        async def run():
            async with EventDispatcher(sink) as events:
                events.started()
                events.error("later")
            return events

        events = asyncio.run(run())
        assert calls == [EventKind.INSTALL_STARTED, EventKind.INSTALL_ERROR]
        assert events.dropped == 1
        assert events.delivered == 1

    def test_no_sink(self):
        async def run():
            async with EventDispatcher(None) as events:
                events.started()
            return events

        events = asyncio.run(run())
        assert events.delivered == 0

    def test_progress_channel(self, sink: RecordingSink):
        async def run():
            async with EventDispatcher(sink) as events:
                on_progress = events.progress(EventKind.ONLINE_PATCH_PROGRESS)
                on_progress(ProgressEvent(phase=ProgressPhase.ONLINE_PATCH, percent=5))
                events.error("hash", kind=EventKind.ONLINE_PATCH_ERROR)

        asyncio.run(run())
        assert sink.kinds() == [EventKind.ONLINE_PATCH_PROGRESS, EventKind.ONLINE_PATCH_ERROR]
        assert sink.events[1].message == "hash"

    def test_aclose_without_start(self):
        asyncio.run(EventDispatcher(RecordingSink()).aclose())
