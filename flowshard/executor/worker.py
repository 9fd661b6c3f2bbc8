"""
Shard Worker.

Encapsulates the execution environment of a single shard: one device, one
driver port, one chunk plan, one session.
"""

import asyncio
import functools
import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from flowshard.executor.errors import ConfigurationError, SessionInitializationError
from flowshard.executor.interfaces import FlowRunner, Session, SessionFactory
from flowshard.executor.types import (
    ExecutionPlan,
    FlowRef,
    ReportFormat,
    RunnerConfig,
    SessionConfig,
    ShardMode,
    ShardOutcome,
    TestExecutionSummary,
    WorkerConfig,
)


class ShardRunMode(str, Enum):
    """What a shard does once its session is open."""
    CONTINUOUS = "continuous"   # Re-run on change until interrupted
    SUITE = "suite"             # All flows in the chunk, structured summary
    SINGLE = "single"           # Exactly one flow, pass/fail only


def choose_run_mode(
    config: RunnerConfig,
    shard_mode: ShardMode,
    effective_shards: int,
) -> ShardRunMode:
    """
    Decide how shards execute their chunk.

    A suite run is used for folder or multi-file input, when a report was
    requested, or when one file is replicated across several shards.

    Raises:
        ConfigurationError: If continuous mode is combined with a suite run.
    """
    is_replicating_single_file = (
        shard_mode == ShardMode.ALL and effective_shards > 1 and config.is_single_file
    )
    is_multiple_files = not config.is_single_file
    is_asking_for_report = config.report_format != ReportFormat.NOOP

    if is_multiple_files or is_asking_for_report or is_replicating_single_file:
        if config.continuous:
            inputs = ", ".join(str(p) for p in config.flow_inputs)
            raise ConfigurationError(
                f"Continuous mode is not supported when running multiple flows. ({inputs})"
            )
        return ShardRunMode.SUITE

    if config.continuous:
        return ShardRunMode.CONTINUOUS
    return ShardRunMode.SINGLE


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Await coroutine functions, run plain functions in the default executor."""
    if asyncio.iscoroutinefunction(func):
        return await func(*args)

    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, functools.partial(func, *args))
    if inspect.isawaitable(result):
        return await result
    return result


class ShardWorker:
    """
    Worker for one shard.

    Opens a session for its (device, port) pair, runs its chunk plan in the
    selected mode and always closes the session, whatever happened.

    Implements the async context manager protocol:
        async with ShardWorker(...) as worker:
            await worker.initialize()
            outcome = await worker.execute()
    """

    def __init__(
        self,
        shard_index: int,
        device_id: str,
        port: int,
        plan: ExecutionPlan,
        session_factory: SessionFactory,
        flow_runner: FlowRunner,
        run_mode: ShardRunMode,
        config: Optional[WorkerConfig] = None,
        session_config: Optional[SessionConfig] = None,
        report_shard_index: Optional[int] = None,
    ) -> None:
        """
        Initialize shard worker.

        Args:
            shard_index: Index of this shard.
            device_id: Device bound to this shard.
            port: Driver host port owned by this shard.
            plan: Chunk plan to execute.
            session_factory: Opens the device session.
            flow_runner: Executes flows on the session.
            run_mode: Continuous, suite or single flow.
            config: Worker timeouts.
            session_config: Settings passed through to the session factory.
            report_shard_index: Shard index to tag suites with, None for unsharded runs.
        """
        self.shard_index = shard_index
        self.device_id = device_id
        self.port = port
        self.plan = plan
        self.session_factory = session_factory
        self.flow_runner = flow_runner
        self.run_mode = run_mode
        self.config = config or WorkerConfig()
        self.session_config = session_config or SessionConfig()
        self.report_shard_index = report_shard_index
        self.session: Optional[Session] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return f"[shard {self.shard_index + 1}]"

    async def initialize(self) -> None:
        """
        Open the device session.

        Raises:
            SessionInitializationError: If the session cannot be opened in time.
        """
        if self.session is not None:
            logger.warning(f"{self.label} Session for device {self.device_id} already open")
            return

        logger.info(
            f"{self.label} Selected device {self.device_id} using port {self.port} "
            f"with execution plan {self.plan}"
        )
        try:
            self.session = await asyncio.wait_for(
                self.session_factory.open_session(
                    self.device_id, self.port, self.session_config
                ),
                timeout=self.config.setup_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            raise SessionInitializationError(
                self.device_id,
                self.port,
                f"Opening the session timed out after {self.config.setup_timeout_ms}ms",
            )
        except Exception as e:
            raise SessionInitializationError(self.device_id, self.port, str(e), cause=e)

    async def execute(self) -> ShardOutcome:
        """
        Execute the chunk plan in this worker's run mode.

        Returns:
            The shard outcome.

        Raises:
            RuntimeError: If the session is not open.
        """
        if self.session is None:
            raise RuntimeError(
                f"{self.label} Session for device {self.device_id} not open. "
                f"Call initialize() first."
            )

        self.started_at = datetime.now()
        try:
            if self.run_mode == ShardRunMode.SUITE:
                return await self._run_suite()
            if self.run_mode == ShardRunMode.CONTINUOUS:
                await call_maybe_async(
                    self.flow_runner.run_continuous, self.session, self._single_flow()
                )
                return ShardOutcome()
            return await self._run_single()
        finally:
            self.finished_at = datetime.now()

    async def _run_suite(self) -> ShardOutcome:
        summary: TestExecutionSummary = await call_maybe_async(
            self.flow_runner.run_suite, self.session, self.plan, self.report_shard_index
        )
        logger.info(
            f"{self.label} Suite finished on {self.device_id}: "
            f"{summary.passed_count}/{summary.total_tests} passed"
        )
        return ShardOutcome(
            passed_count=summary.passed_count,
            total_count=summary.total_tests,
            summary=summary,
        )

    async def _run_single(self) -> ShardOutcome:
        flow = self._single_flow()
        passed = bool(await call_maybe_async(self.flow_runner.run_single, self.session, flow))
        logger.info(
            f"{self.label} Flow {flow} {'passed' if passed else 'failed'} on {self.device_id}"
        )
        return ShardOutcome(passed_count=1 if passed else 0, total_count=1)

    def _single_flow(self) -> FlowRef:
        flows = self.plan.flows_to_run or self.plan.sequence.flows
        if not flows:
            raise ConfigurationError("No flow to run")
        return flows[0]

    async def cleanup(self) -> None:
        """Close the session, tolerating slow or failing teardown."""
        if self.session is None:
            return

        session, self.session = self.session, None
        try:
            await asyncio.wait_for(
                session.close(),
                timeout=self.config.teardown_timeout_ms / 1000.0,
            )
            logger.info(f"{self.label} Session closed for device {self.device_id}")
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.label} Closing session timed out for device {self.device_id}"
            )
        except Exception as e:
            logger.error(
                f"{self.label} Closing session failed for device {self.device_id}: {e}"
            )

    async def __aenter__(self) -> "ShardWorker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()

    @property
    def duration_ms(self) -> int:
        if self.started_at is None or self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)
