"""Test shard workers and the concurrent shard coordinator."""

import random
from pathlib import Path

import pytest

from conftest import FakeFlowRunner, FakeSessionFactory, make_plan
from flowshard.executor.coordinator import ShardExecutionCoordinator
from flowshard.executor.errors import (
    ConfigurationError,
    SessionInitializationError,
    ShardExecutionError,
)
from flowshard.executor.ports import PortAllocator
from flowshard.executor.types import (
    ReportFormat,
    RunnerConfig,
    ShardMode,
    WorkerConfig,
)
from flowshard.executor.worker import ShardRunMode, ShardWorker, choose_run_mode

DEVICES = ["emulator-5554", "emulator-5556", "emulator-5558"]


def coordinator_for(session_factory, flow_runner, run_mode=ShardRunMode.SUITE, **kwargs):
    return ShardExecutionCoordinator(
        session_factory=session_factory,
        flow_runner=flow_runner,
        port_allocator=PortAllocator(rng=random.Random(7)),
        run_mode=run_mode,
        **kwargs,
    )


# ===========================================================================
# RUN MODE
# ===========================================================================


class TestChooseRunMode:

    def test_folder_input_is_suite(self, tmp_path):
        config = RunnerConfig(flow_inputs=[tmp_path])
        assert choose_run_mode(config, ShardMode.NONE, 1) == ShardRunMode.SUITE

    def test_single_file_is_single(self):
        config = RunnerConfig(flow_inputs=[Path("login.yaml")])
        assert choose_run_mode(config, ShardMode.NONE, 1) == ShardRunMode.SINGLE

    def test_single_file_with_report_is_suite(self):
        config = RunnerConfig(flow_inputs=[Path("login.yaml")], report_format=ReportFormat.JUNIT)
        assert choose_run_mode(config, ShardMode.NONE, 1) == ShardRunMode.SUITE

    def test_single_file_replicated_is_suite(self):
        config = RunnerConfig(flow_inputs=[Path("login.yaml")], shard_all=2)
        assert choose_run_mode(config, ShardMode.ALL, 2) == ShardRunMode.SUITE

    def test_continuous_single_file(self):
        config = RunnerConfig(flow_inputs=[Path("login.yaml")], continuous=True)
        assert choose_run_mode(config, ShardMode.NONE, 1) == ShardRunMode.CONTINUOUS

    def test_continuous_with_multiple_flows_rejected(self, tmp_path):
        config = RunnerConfig(flow_inputs=[tmp_path], continuous=True)
        with pytest.raises(ConfigurationError, match="Continuous mode is not supported"):
            choose_run_mode(config, ShardMode.NONE, 1)


# ===========================================================================
# WORKER
# ===========================================================================


class TestShardWorker:

    @pytest.mark.asyncio
    async def test_single_flow_outcome(self, session_factory):
        runner = FakeFlowRunner(failing_flows={"flow_0"})
        worker = ShardWorker(
            0, "emulator-5554", 7001, make_plan(1), session_factory, runner, ShardRunMode.SINGLE
        )
        async with worker:
            await worker.initialize()
            outcome = await worker.execute()

        assert (outcome.passed_count, outcome.total_count) == (0, 1)
        assert outcome.summary is None
        assert session_factory.opened[0].closed

    @pytest.mark.asyncio
    async def test_single_flow_from_sequence(self, session_factory, flow_runner):
        plan = make_plan(0, sequence=2)
        worker = ShardWorker(
            0, "emulator-5554", 7001, plan, session_factory, flow_runner, ShardRunMode.SINGLE
        )
        async with worker:
            await worker.initialize()
            await worker.execute()

        assert flow_runner.singles == [plan.sequence.flows[0]]

    @pytest.mark.asyncio
    async def test_continuous_has_no_counts(self, session_factory, flow_runner):
        worker = ShardWorker(
            0, "emulator-5554", 7001, make_plan(1), session_factory, flow_runner,
            ShardRunMode.CONTINUOUS,
        )
        async with worker:
            await worker.initialize()
            outcome = await worker.execute()

        assert outcome.passed_count is None and outcome.total_count is None
        assert len(flow_runner.continuous) == 1

    @pytest.mark.asyncio
    async def test_execute_requires_session(self, session_factory, flow_runner):
        worker = ShardWorker(
            0, "emulator-5554", 7001, make_plan(1), session_factory, flow_runner,
            ShardRunMode.SINGLE,
        )
        with pytest.raises(RuntimeError, match="initialize"):
            await worker.execute()

    @pytest.mark.asyncio
    async def test_session_open_failure(self, flow_runner):
        factory = FakeSessionFactory(fail_for={"emulator-5554"})
        worker = ShardWorker(
            0, "emulator-5554", 7001, make_plan(1), factory, flow_runner, ShardRunMode.SINGLE
        )
        with pytest.raises(SessionInitializationError) as exc_info:
            await worker.initialize()

        assert exc_info.value.port == 7001
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_session_open_timeout(self, flow_runner):
        factory = FakeSessionFactory(delay_s=1.0)
        worker = ShardWorker(
            0, "emulator-5554", 7001, make_plan(1), factory, flow_runner, ShardRunMode.SINGLE,
            config=WorkerConfig(setup_timeout_ms=10),
        )
        with pytest.raises(SessionInitializationError, match="timed out"):
            await worker.initialize()


# ===========================================================================
# COORDINATOR
# ===========================================================================


class TestShardExecutionCoordinator:

    @pytest.mark.asyncio
    async def test_outcomes_in_shard_order(self, session_factory):
        # Shard 0 finishes last
        runner = FakeFlowRunner(delays={"emulator-5554": 0.05})
        chunks = [make_plan(2), make_plan(3), make_plan(1)]
        coordinator = coordinator_for(session_factory, runner)

        outcomes = await coordinator.run(3, DEVICES, chunks)

        assert runner.finished[-1] == "emulator-5554"
        assert [o.total_count for o in outcomes] == [2, 3, 1]

    @pytest.mark.asyncio
    async def test_each_shard_owns_device_and_port(self, session_factory, flow_runner):
        coordinator = coordinator_for(session_factory, flow_runner)
        await coordinator.run(3, DEVICES, [make_plan(1)] * 3)

        pairs = {(s.device_id, s.port) for s in session_factory.opened}
        assert {d for d, _ in pairs} == set(DEVICES)
        assert len({p for _, p in pairs}) == 3
        assert coordinator.ports == [
            next(s.port for s in session_factory.opened if s.device_id == d) for d in DEVICES
        ]

    @pytest.mark.asyncio
    async def test_shard_index_passed_only_when_sharded(self, session_factory, flow_runner):
        coordinator = coordinator_for(session_factory, flow_runner)
        await coordinator.run(1, DEVICES[:1], [make_plan(2)])
        assert flow_runner.shard_indices == [None]
        assert coordinator.ports == [7001]

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self, session_factory):
        runner = FakeFlowRunner(
            crash_on={"emulator-5554"},
            delays={"emulator-5556": 0.02, "emulator-5558": 0.04},
        )
        coordinator = coordinator_for(session_factory, runner)

        with pytest.raises(ShardExecutionError) as exc_info:
            await coordinator.run(3, DEVICES, [make_plan(1)] * 3)

        assert sorted(runner.finished) == ["emulator-5556", "emulator-5558"]
        assert exc_info.value.shard_index == 0
        assert exc_info.value.device_id == "emulator-5554"
        assert exc_info.value.single_flow is False
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_sessions_closed_even_on_failure(self, session_factory):
        runner = FakeFlowRunner(crash_on={"emulator-5556"})
        coordinator = coordinator_for(session_factory, runner)

        with pytest.raises(ShardExecutionError):
            await coordinator.run(3, DEVICES, [make_plan(1)] * 3)

        assert len(session_factory.opened) == 3
        assert all(s.closed for s in session_factory.opened)

    @pytest.mark.asyncio
    async def test_first_failure_by_shard_index(self, flow_runner):
        factory = FakeSessionFactory(fail_for={"emulator-5556", "emulator-5558"})
        coordinator = coordinator_for(factory, flow_runner, run_mode=ShardRunMode.SINGLE)

        with pytest.raises(ShardExecutionError) as exc_info:
            await coordinator.run(3, DEVICES, [make_plan(1)] * 3)

        assert exc_info.value.shard_index == 1
        assert exc_info.value.single_flow is True
        assert isinstance(exc_info.value.cause, SessionInitializationError)

    @pytest.mark.asyncio
    async def test_pinned_port_shared(self, session_factory, flow_runner):
        coordinator = coordinator_for(session_factory, flow_runner, pinned_port=9100)
        await coordinator.run(2, DEVICES[:2], [make_plan(1)] * 2)
        assert coordinator.ports == [9100, 9100]

    @pytest.mark.asyncio
    async def test_too_few_devices(self, session_factory, flow_runner):
        coordinator = coordinator_for(session_factory, flow_runner)
        with pytest.raises(ConfigurationError):
            await coordinator.run(3, DEVICES[:2], [make_plan(1)] * 3)
