"""
Shared fixtures for the Flowshard test suite.

Provides fake sessions, flow runners and device discovery so that every
test runs WITHOUT real devices, drivers or network access.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from flowshard.executor.types import (
    DeviceInfo,
    DeviceType,
    ExecutionPlan,
    FlowRef,
    FlowStatus,
    Platform,
    SuiteFlowResult,
    SuiteResult,
    TestExecutionSummary,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSession:
    def __init__(self, device_id: str, port: int):
        self.device_id = device_id
        self.port = port
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeSessionFactory:
    """Opens fake sessions, optionally failing for some devices."""

    def __init__(self, fail_for: Optional[Set[str]] = None, delay_s: float = 0.0):
        self.fail_for = fail_for or set()
        self.delay_s = delay_s
        self.opened: List[FakeSession] = []

    async def open_session(self, device_id, port, config):
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if device_id in self.fail_for:
            raise ConnectionError(f"cannot reach {device_id}")
        session = FakeSession(device_id, port)
        self.opened.append(session)
        return session


class FakeFlowRunner:
    """Passes every flow except those named in ``failing_flows``."""

    def __init__(
        self,
        failing_flows: Optional[Set[str]] = None,
        crash_on: Optional[Set[str]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.failing_flows = failing_flows or set()
        self.crash_on = crash_on or set()
        self.delays = delays or {}
        self.suites: Dict[str, ExecutionPlan] = {}
        self.shard_indices: List[Optional[int]] = []
        self.singles: List[FlowRef] = []
        self.continuous: List[FlowRef] = []
        self.finished: List[str] = []

    async def run_suite(self, session, plan, shard_index):
        await asyncio.sleep(self.delays.get(session.device_id, 0))
        if session.device_id in self.crash_on:
            raise RuntimeError(f"driver crashed on {session.device_id}")

        self.suites[session.device_id] = plan
        self.shard_indices.append(shard_index)
        flows = [
            SuiteFlowResult(
                name=flow.path.stem,
                status=(
                    FlowStatus.ERROR if flow.path.stem in self.failing_flows
                    else FlowStatus.SUCCESS
                ),
            )
            for flow in plan.flows_to_run
        ]
        passed = sum(1 for f in flows if f.status == FlowStatus.SUCCESS)
        self.finished.append(session.device_id)
        return TestExecutionSummary(
            passed=passed == len(flows),
            suites=[SuiteResult(
                passed=passed == len(flows),
                flows=flows,
                device_name=session.device_id,
            )],
            passed_count=passed,
            total_tests=len(flows),
        )

    def run_single(self, session, flow):
        self.singles.append(flow)
        return flow.path.stem not in self.failing_flows

    async def run_continuous(self, session, flow):
        self.continuous.append(flow)


class FakeDiscovery:
    def __init__(self, devices: List[DeviceInfo]):
        self.devices = devices
        self.calls = 0

    async def list_connected_devices(self, include_web: bool = False) -> List[DeviceInfo]:
        self.calls += 1
        return list(self.devices)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def flow(name: str, web: bool = False) -> FlowRef:
    return FlowRef(path=Path(f"flows/{name}.yaml"), is_web_flow=web)


def make_plan(count: int, sequence: int = 0) -> ExecutionPlan:
    return ExecutionPlan.of(
        [flow(f"flow_{i}") for i in range(count)],
        [flow(f"seq_{i}") for i in range(sequence)],
    )


def android_device(serial: str) -> DeviceInfo:
    return DeviceInfo(
        device_id=serial,
        platform=Platform.ANDROID,
        device_type=DeviceType.EMULATOR if serial.startswith("emulator-") else DeviceType.REAL,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    return FakeSessionFactory()


@pytest.fixture
def flow_runner():
    return FakeFlowRunner()


@pytest.fixture
def three_devices():
    return [android_device(f"emulator-{5554 + 2 * i}") for i in range(3)]
