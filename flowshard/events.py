"""
Run events.

Analytics are an external concern: the orchestrator only hands events to an
injected sink, fire-and-forget, and never waits on it.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Set

from loguru import logger


@dataclass
class RunEvent:
    """Base class for run events."""
    name: str = "run_event"
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TestRunStarted(RunEvent):
    __test__ = False

    name: str = "test_run_started"
    platform: str = "unknown"


@dataclass
class TestRunFinished(RunEvent):
    __test__ = False

    name: str = "test_run_finished"
    platform: str = "unknown"
    passed: bool = False
    duration_ms: int = 0


@dataclass
class TestRunFailed(RunEvent):
    __test__ = False

    name: str = "test_run_failed"
    platform: str = "unknown"
    error: str = ""


@dataclass
class WorkspaceRunStarted(RunEvent):
    name: str = "workspace_run_started"
    platform: str = "unknown"
    flow_count: int = 0
    device_count: int = 0


@dataclass
class WorkspaceRunFinished(RunEvent):
    name: str = "workspace_run_finished"
    platform: str = "unknown"
    flow_count: int = 0
    device_count: int = 0
    passed: int = 0
    total: int = 0
    duration_ms: int = 0


@dataclass
class WorkspaceRunFailed(RunEvent):
    name: str = "workspace_run_failed"
    platform: str = "unknown"
    flow_count: int = 0
    device_count: int = 0
    error: str = ""


@dataclass
class CloudRunFinished(RunEvent):
    name: str = "cloud_run_finished"
    upload_id: str = ""
    total_flows: int = 0
    passed_flows: int = 0
    failed_flows: int = 0
    timed_out: bool = False


class EventSink(Protocol):
    """Receives run events. ``track`` may be a plain function or a coroutine."""

    def track(self, event: RunEvent) -> Any:
        ...


class NullEventSink:
    """Sink that drops every event."""

    def track(self, event: RunEvent) -> None:
        return None


class RecordingEventSink:
    """Sink that keeps events in memory."""

    def __init__(self) -> None:
        self.events: List[RunEvent] = []

    def track(self, event: RunEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.name for e in self.events]


class EventDispatcher:
    """
    Hands events to a sink without blocking the caller.

    Coroutine sinks are scheduled as tasks; errors raised by the sink are
    logged and dropped so they can never affect scheduling.
    """

    def __init__(self, sink: Optional[EventSink] = None) -> None:
        self._sink = sink or NullEventSink()
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: RunEvent) -> None:
        try:
            result = self._sink.track(event)
        except Exception as e:
            logger.debug(f"Event sink failed for {event.name}: {e}")
            return

        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_done(event.name))

    def _on_done(self, name: str) -> Callable[[asyncio.Task], None]:
        def callback(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f"Event sink failed for {name}: {task.exception()}")
        return callback

    async def flush(self, timeout_s: float = 5.0) -> None:
        """Give pending sink calls a bounded chance to finish."""
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout_s)
        for task in still_pending:
            task.cancel()
