"""
Interfaces of the collaborators the executor drives but does not implement.

Flow interpretation, device drivers and report rendering live outside this
package; they plug in through these protocols.
"""

from pathlib import Path
from typing import Any, BinaryIO, List, Optional, Protocol, Union

from flowshard.executor.types import (
    DeviceInfo,
    ExecutionPlan,
    FlowRef,
    SessionConfig,
    TestExecutionSummary,
)


class Session(Protocol):
    """An open connection to one device, bound to one driver port."""

    device_id: str
    port: int

    async def close(self) -> None:
        ...


class SessionFactory(Protocol):
    """Opens device sessions."""

    async def open_session(
        self,
        device_id: str,
        port: int,
        config: SessionConfig,
    ) -> Session:
        ...


class FlowRunner(Protocol):
    """
    Executes flows against an open session.

    Implementations may be plain functions or coroutines; the worker runs
    synchronous ones in the default executor.
    """

    def run_suite(
        self,
        session: Session,
        plan: ExecutionPlan,
        shard_index: Optional[int],
    ) -> Union[TestExecutionSummary, Any]:
        ...

    def run_single(self, session: Session, flow: FlowRef) -> Union[bool, Any]:
        ...

    def run_continuous(self, session: Session, flow: FlowRef) -> Any:
        ...


class DeviceController(Protocol):
    """Install, launch and terminate apps on a concrete device."""

    async def install(self, device_id: str, app_path: Path) -> None:
        ...

    async def launch(self, device_id: str, spec: Any) -> None:
        ...

    async def terminate(self, device_id: str, bundle_id: str) -> None:
        ...

    async def list_connected(self) -> List[DeviceInfo]:
        ...


class Reporter(Protocol):
    """Renders a merged summary into a report file."""

    def report(self, summary: TestExecutionSummary, output: BinaryIO) -> None:
        ...
