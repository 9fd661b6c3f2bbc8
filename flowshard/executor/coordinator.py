"""
Shard Execution Coordinator.

Runs one task per shard concurrently, each owning one device and one port
for its lifetime, and collects one outcome per shard.
"""

import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from flowshard.executor.errors import ConfigurationError, ShardExecutionError
from flowshard.executor.interfaces import FlowRunner, SessionFactory
from flowshard.executor.ports import PortAllocator
from flowshard.executor.types import (
    ExecutionPlan,
    SessionConfig,
    ShardOutcome,
    WorkerConfig,
)
from flowshard.executor.worker import ShardRunMode, ShardWorker


class ShardExecutionCoordinator:
    """
    Fans shards out as asyncio tasks and joins all of them.

    - every shard is launched at once, one task each
    - a failing shard never cancels its siblings
    - the join waits for every task; the first failure (by shard index) is
      raised only afterwards, wrapped in ShardExecutionError
    - outcomes are returned in shard order, not completion order

    Example:
        coordinator = ShardExecutionCoordinator(
            session_factory, flow_runner, PortAllocator(), ShardRunMode.SUITE,
        )
        outcomes = await coordinator.run(3, ["emulator-5554", "emulator-5556",
                                             "emulator-5558"], chunk_plans)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        flow_runner: FlowRunner,
        port_allocator: PortAllocator,
        run_mode: ShardRunMode,
        pinned_port: Optional[int] = None,
        worker_config: Optional[WorkerConfig] = None,
        session_config: Optional[SessionConfig] = None,
    ) -> None:
        self.session_factory = session_factory
        self.flow_runner = flow_runner
        self.port_allocator = port_allocator
        self.run_mode = run_mode
        self.pinned_port = pinned_port
        self.worker_config = worker_config or WorkerConfig()
        self.session_config = session_config or SessionConfig()
        self.ports: List[Optional[int]] = []

    async def run(
        self,
        effective_shards: int,
        device_ids: Sequence[str],
        chunk_plans: Sequence[ExecutionPlan],
    ) -> List[ShardOutcome]:
        """
        Run every shard and wait for all of them.

        Args:
            effective_shards: Number of shards to run.
            device_ids: Device per shard index.
            chunk_plans: Plan per shard index.

        Returns:
            One ShardOutcome per shard, in shard order.

        Raises:
            ShardExecutionError: If any shard raised, after all shards finished.
        """
        if len(device_ids) < effective_shards or len(chunk_plans) < effective_shards:
            raise ConfigurationError(
                f"{effective_shards} shards need as many devices ({len(device_ids)}) "
                f"and chunk plans ({len(chunk_plans)})"
            )

        self.ports = [None] * effective_shards
        logger.info(f"Starting {effective_shards} shard(s)")

        tasks = [
            asyncio.create_task(
                self._run_shard(index, effective_shards, device_ids[index], chunk_plans[index]),
                name=f"shard-{index}",
            )
            for index in range(effective_shards)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: List[ShardOutcome] = []
        first_error: Optional[ShardExecutionError] = None
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(f"[shard {index + 1}] Failed on {device_ids[index]}: {result}")
                if first_error is None:
                    first_error = self._wrap(index, device_ids[index], result)
                continue
            outcomes.append(result)

        if first_error is not None:
            raise first_error from first_error.cause

        logger.info(f"All {effective_shards} shard(s) finished")
        return outcomes

    async def _run_shard(
        self,
        shard_index: int,
        effective_shards: int,
        device_id: str,
        plan: ExecutionPlan,
    ) -> ShardOutcome:
        port = self.port_allocator.acquire(effective_shards, self.pinned_port)
        self.ports[shard_index] = port

        worker = ShardWorker(
            shard_index=shard_index,
            device_id=device_id,
            port=port,
            plan=plan,
            session_factory=self.session_factory,
            flow_runner=self.flow_runner,
            run_mode=self.run_mode,
            config=self.worker_config,
            session_config=self.session_config,
            report_shard_index=shard_index if effective_shards > 1 else None,
        )
        async with worker:
            await worker.initialize()
            return await worker.execute()

    def _wrap(
        self,
        shard_index: int,
        device_id: str,
        error: BaseException,
    ) -> ShardExecutionError:
        if isinstance(error, ShardExecutionError):
            return error
        return ShardExecutionError(
            shard_index=shard_index,
            device_id=device_id,
            single_flow=self.run_mode != ShardRunMode.SUITE,
            cause=error,
        )
