"""
Shard Partitioner.

Computes the effective shard count and splits an execution plan into
per-shard chunk plans.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from loguru import logger

from flowshard.executor.errors import ConfigurationError, InsufficientDevicesError
from flowshard.executor.types import ExecutionPlan, ShardMode


@dataclass
class PartitionResult:
    """
    Result of partitioning a plan.

    Attributes:
        effective_shards: Number of shards that will actually run.
        chunk_plans: One plan per shard, indexed by shard.
        warnings: Non-fatal messages for the caller to surface.
    """
    effective_shards: int
    chunk_plans: List[ExecutionPlan]
    warnings: List[str] = field(default_factory=list)


def resolve_shard_mode(
    shard_split: Optional[int] = None,
    shard_all: Optional[int] = None,
    legacy_shards: Optional[int] = None,
) -> Tuple[ShardMode, int, List[str]]:
    """
    Turn the sharding options into a mode and a requested shard count.

    Returns:
        (mode, requested_shards, warnings)

    Raises:
        ConfigurationError: If both split and all were given.
    """
    warnings: List[str] = []

    if shard_split is not None and shard_all is not None:
        raise ConfigurationError(
            "Options --shard-split and --shard-all are mutually exclusive."
        )

    if legacy_shards is not None:
        message = (
            "--shards option is deprecated and will be removed in a future version. "
            "Use --shard-split or --shard-all instead."
        )
        logger.warning(message)
        warnings.append(message)
        shard_split = legacy_shards

    if shard_all is not None:
        return ShardMode.ALL, shard_all, warnings
    if shard_split is not None:
        return ShardMode.SPLIT, shard_split, warnings
    return ShardMode.NONE, 1, warnings


class ShardPartitioner:
    """
    Splits an execution plan into shards.

    Three modes are supported:
    - SPLIT (and NONE): flows are dealt out by index, ``j mod shards``
    - ALL: every shard receives a full copy of the plan
    - sequence-only plans always run as a single shard

    Example:
        partitioner = ShardPartitioner()
        result = partitioner.plan(plan, requested_shards=3,
                                  shard_mode=ShardMode.SPLIT, device_count=3)
        for index, chunk in enumerate(result.chunk_plans):
            ...
    """

    def validate(self, plan: ExecutionPlan, requested_shards: int) -> None:
        """
        Check the plan against the requested shard count.

        Needs no device information, so callers run it before discovery.

        Raises:
            ConfigurationError: For a non-positive shard count, sequential plus
                sharded runs, or an empty plan.
        """
        if requested_shards <= 0:
            raise ConfigurationError(
                f"Number of shards must be positive, got {requested_shards}"
            )

        if plan.is_sequence_only:
            return

        if requested_shards > 1 and plan.sequence.flows:
            raise ConfigurationError("Cannot run sharded tests with sequential execution")

        if not plan.flows_to_run:
            raise ConfigurationError("No flows to run")

    def plan(
        self,
        plan: ExecutionPlan,
        requested_shards: int,
        shard_mode: ShardMode,
        device_count: int,
    ) -> PartitionResult:
        """
        Partition a plan.

        Args:
            plan: The plan to split.
            requested_shards: Number of shards asked for.
            shard_mode: Distribution mode.
            device_count: Number of devices available for shards.

        Returns:
            PartitionResult with effective shard count and chunk plans.

        Raises:
            ConfigurationError: For sequential plus sharded runs or empty plans.
            InsufficientDevicesError: If requested shards exceed devices.
        """
        self.validate(plan, requested_shards)

        if plan.is_sequence_only:
            # Sequential flows cannot be parallelized
            logger.debug("Plan only contains sequential flows, using a single shard")
            return PartitionResult(effective_shards=1, chunk_plans=[plan])

        if requested_shards > device_count:
            logger.warning(
                f"You have {device_count} devices connected, which is not enough to run "
                f"{requested_shards} shards. Missing {requested_shards - device_count} device(s)."
            )
            raise InsufficientDevicesError(requested_shards, device_count)

        warnings: List[str] = []

        if shard_mode == ShardMode.ALL:
            effective_shards = min(requested_shards, device_count)
            chunk_plans = [plan.copy() for _ in range(effective_shards)]
        else:
            flow_count = len(plan.flows_to_run)
            effective_shards = min(requested_shards, flow_count)
            if requested_shards > flow_count:
                warning = (
                    f"Requested {requested_shards} shards, but it cannot be higher than "
                    f"the number of flows ({flow_count}). "
                    f"Will use {effective_shards} shards instead."
                )
                logger.warning(warning)
                warnings.append(warning)
            chunk_plans = self._split(plan, effective_shards)

        return PartitionResult(
            effective_shards=effective_shards,
            chunk_plans=chunk_plans,
            warnings=warnings,
        )

    @staticmethod
    def _split(plan: ExecutionPlan, shards: int) -> List[ExecutionPlan]:
        """Deal flows into ``shards`` buckets by index, keeping relative order."""
        buckets: List[list] = [[] for _ in range(shards)]
        for index, flow in enumerate(plan.flows_to_run):
            buckets[index % shards].append(flow)
        return [plan.copy(flows_to_run=tuple(bucket)) for bucket in buckets]

    @staticmethod
    def describe(
        shard_mode: ShardMode,
        effective_shards: int,
        flow_count: int,
    ) -> Optional[str]:
        """Human readable summary of how the work will be spread, if sharded."""
        if shard_mode == ShardMode.ALL:
            return (
                f"Will run {effective_shards} shards, "
                f"with all {flow_count} flows in each shard"
            )
        if shard_mode == ShardMode.SPLIT:
            flows_per_shard = int(flow_count / effective_shards + 0.5)
            prefix = "approx. " if flow_count % effective_shards != 0 else ""
            return (
                f"Will split {flow_count} flows across {effective_shards} shards "
                f"({prefix}{flows_per_shard} flows per shard)"
            )
        return None
