"""
Test Runner.

Drives a local test run end to end: validate options, pick devices, split
the plan into shards, run them concurrently and turn the merged result into
an exit code.
"""

import random
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger

from flowshard.events import (
    EventDispatcher,
    EventSink,
    TestRunFailed,
    TestRunFinished,
    TestRunStarted,
    WorkspaceRunFailed,
    WorkspaceRunFinished,
    WorkspaceRunStarted,
)
from flowshard.executor.aggregate import AggregateResult, ResultAggregator, box
from flowshard.executor.coordinator import ShardExecutionCoordinator
from flowshard.executor.discovery import DeviceDiscovery
from flowshard.executor.errors import InsufficientDevicesError
from flowshard.executor.interfaces import FlowRunner, Reporter, SessionFactory
from flowshard.executor.partition import ShardPartitioner, resolve_shard_mode
from flowshard.executor.ports import PortAllocator, PortClaimSet
from flowshard.executor.selector import DeviceSelector
from flowshard.executor.types import (
    ExecutionPlan,
    ReportFormat,
    RunnerConfig,
    SessionConfig,
)
from flowshard.executor.worker import ShardRunMode, choose_run_mode


class TestRunner:
    """
    Orchestrates one local test invocation.

    Every fatal condition (bad options, missing devices, not enough devices)
    is raised before any shard starts. Shard failures are reported after all
    shards joined.

    Example:
        runner = TestRunner(config, session_factory, flow_runner)
        exit_code = await runner.run(plan)
    """
    __test__ = False

    def __init__(
        self,
        config: RunnerConfig,
        session_factory: SessionFactory,
        flow_runner: FlowRunner,
        discovery: Optional[DeviceDiscovery] = None,
        event_sink: Optional[EventSink] = None,
        reporter: Optional[Reporter] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.flow_runner = flow_runner
        self.discovery = discovery or DeviceDiscovery()
        self.reporter = reporter
        self.events = EventDispatcher(event_sink)
        self.partitioner = ShardPartitioner()
        self.selector = DeviceSelector()
        self.aggregator = ResultAggregator()
        self._rng = rng
        self.warnings: List[str] = []
        self.last_result: Optional[AggregateResult] = None

    @property
    def platform_name(self) -> str:
        return self.config.platform or "unknown"

    async def run(self, plan: ExecutionPlan) -> int:
        """
        Run the plan.

        Returns:
            0 if every flow passed, 1 otherwise.

        Raises:
            ConfigurationError, ResourceShortageError, DeviceNotConnectedError:
                before any shard starts.
            ShardExecutionError: if a shard raised, after all shards joined.
        """
        self.config.validate_files()

        try:
            return await self._run(plan)
        except Exception as e:
            self._track_failure(plan, e)
            raise
        finally:
            await self.events.flush()

    async def _run(self, plan: ExecutionPlan) -> int:
        shard_mode, requested_shards, warnings = resolve_shard_mode(
            self.config.shard_split, self.config.shard_all, self.config.legacy_shards
        )
        self.warnings.extend(warnings)
        self.partitioner.validate(plan, requested_shards)

        include_web = plan.includes_web_flow()
        if include_web:
            logger.warning("Web support is in Beta.")

        connected = await self.discovery.list_connected_devices(include_web=include_web)
        device_ids = self.selector.select(
            plan, self.config.device_ids, self.config.platform, connected
        )
        if not device_ids:
            raise InsufficientDevicesError(1, 0)

        partition = self.partitioner.plan(plan, requested_shards, shard_mode, len(device_ids))
        self.warnings.extend(partition.warnings)
        effective_shards = partition.effective_shards

        run_mode = choose_run_mode(self.config, shard_mode, effective_shards)

        if self.config.driver_host_port is not None and effective_shards > 1:
            logger.warning(
                f"Driver port {self.config.driver_host_port} is pinned but "
                f"{effective_shards} shards will run; every shard will use it"
            )

        message = self.partitioner.describe(shard_mode, effective_shards, plan.flow_count)
        if message:
            logger.info(message)

        coordinator = ShardExecutionCoordinator(
            session_factory=self.session_factory,
            flow_runner=self.flow_runner,
            port_allocator=PortAllocator(
                port_range=self.config.port_range,
                claims=PortClaimSet(),
                rng=self._rng,
            ),
            run_mode=run_mode,
            pinned_port=self.config.driver_host_port,
            worker_config=self.config.worker,
            session_config=SessionConfig(
                platform=self.config.platform,
                headless=self.config.headless,
                app_file=self.config.app_file,
                execution_plan=plan,
            ),
        )

        started = datetime.now()
        self._track_start(plan, run_mode, effective_shards)
        outcomes = await coordinator.run(
            effective_shards, device_ids[:effective_shards], partition.chunk_plans
        )
        duration_ms = int((datetime.now() - started).total_seconds() * 1000)

        result = self.aggregator.merge(outcomes)
        self.last_result = result

        if result.summary is not None:
            self._save_report(result)

        if effective_shards > 1:
            logger.info("\n" + box(self.aggregator.shard_lines(result, outcomes)))

        self._track_finish(plan, run_mode, effective_shards, result, duration_ms)
        return result.exit_code

    def _save_report(self, result: AggregateResult) -> None:
        extension = self.config.report_format.file_extension
        if self.reporter is None or self.config.report_format == ReportFormat.NOOP:
            return
        output = Path(self.config.output or f"report{extension}")
        with open(output, "wb") as sink:
            self.reporter.report(result.summary, sink)
        logger.info(f"Report written to {output.absolute()}")

    def _track_start(self, plan: ExecutionPlan, run_mode: ShardRunMode, shards: int) -> None:
        if run_mode == ShardRunMode.SUITE:
            self.events.emit(WorkspaceRunStarted(
                platform=self.platform_name,
                flow_count=plan.flow_count,
                device_count=shards,
            ))
        else:
            self.events.emit(TestRunStarted(platform=self.platform_name))

    def _track_finish(
        self,
        plan: ExecutionPlan,
        run_mode: ShardRunMode,
        shards: int,
        result: AggregateResult,
        duration_ms: int,
    ) -> None:
        if run_mode == ShardRunMode.SUITE:
            self.events.emit(WorkspaceRunFinished(
                platform=self.platform_name,
                flow_count=plan.flow_count,
                device_count=shards,
                passed=result.passed,
                total=result.total,
                duration_ms=duration_ms,
            ))
        else:
            self.events.emit(TestRunFinished(
                platform=self.platform_name,
                passed=result.success,
                duration_ms=duration_ms,
            ))

    def _track_failure(self, plan: ExecutionPlan, error: Exception) -> None:
        message = str(error) or "Unknown error occurred during workspace execution"
        if plan.flow_count > 1:
            self.events.emit(WorkspaceRunFailed(
                platform=self.platform_name,
                flow_count=plan.flow_count,
                error=message,
            ))
        else:
            self.events.emit(TestRunFailed(platform=self.platform_name, error=message))
