"""Test fire-and-forget event dispatch."""

import asyncio
from unittest.mock import MagicMock

import pytest

from flowshard.events import (
    EventDispatcher,
    RecordingEventSink,
    TestRunStarted,
    WorkspaceRunStarted,
)


class TestEventDispatcher:

    @pytest.mark.asyncio
    async def test_sync_sink(self):
        sink = RecordingEventSink()
        dispatcher = EventDispatcher(sink)

        dispatcher.emit(TestRunStarted(platform="android"))
        await dispatcher.flush()

        assert sink.names() == ["test_run_started"]

    @pytest.mark.asyncio
    async def test_async_sink_is_not_awaited_by_emit(self):
        received = []
        release = asyncio.Event()

        class SlowSink:
            async def track(self, event):
                await release.wait()
                received.append(event.name)

        dispatcher = EventDispatcher(SlowSink())
        dispatcher.emit(WorkspaceRunStarted(flow_count=3))
        assert received == []

        release.set()
        await dispatcher.flush()
        assert received == ["workspace_run_started"]

    @pytest.mark.asyncio
    async def test_sink_errors_are_swallowed(self):
        sink = MagicMock()
        sink.track.side_effect = RuntimeError("analytics down")

        dispatcher = EventDispatcher(sink)
        dispatcher.emit(TestRunStarted())
        await dispatcher.flush()

        sink.track.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_gives_up_on_hanging_sink(self):
        class HangingSink:
            async def track(self, event):
                await asyncio.sleep(60)

        dispatcher = EventDispatcher(HangingSink())
        dispatcher.emit(TestRunStarted())
        await dispatcher.flush(timeout_s=0.01)
