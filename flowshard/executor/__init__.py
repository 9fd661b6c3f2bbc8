"""
Sharded Execution Engine for Flowshard.

This module splits a plan of test flows across connected devices, gives each
shard its own driver port and runs the shards concurrently.
"""

from flowshard.executor.aggregate import AggregateResult, ResultAggregator, merge_summaries
from flowshard.executor.coordinator import ShardExecutionCoordinator
from flowshard.executor.discovery import DeviceDiscovery, DiscoverySummary
from flowshard.executor.errors import (
    ConfigurationError,
    DeviceNotConnectedError,
    FlowshardError,
    InsufficientDevicesError,
    PortAllocationError,
    ResourceShortageError,
    SessionInitializationError,
    ShardExecutionError,
)
from flowshard.executor.interfaces import (
    DeviceController,
    FlowRunner,
    Reporter,
    Session,
    SessionFactory,
)
from flowshard.executor.partition import PartitionResult, ShardPartitioner, resolve_shard_mode
from flowshard.executor.ports import PortAllocator, PortClaimSet
from flowshard.executor.runner import TestRunner
from flowshard.executor.selector import DeviceSelector, parse_device_ids
from flowshard.executor.types import (
    DeviceInfo,
    DeviceType,
    ExecutionPlan,
    FlowRef,
    FlowSequence,
    FlowStatus,
    Platform,
    PortRange,
    ReportFormat,
    RunnerConfig,
    SessionConfig,
    ShardMode,
    ShardOutcome,
    SuiteFlowResult,
    SuiteResult,
    TestExecutionSummary,
    WorkerConfig,
    WorkspaceConfig,
)
from flowshard.executor.worker import ShardRunMode, ShardWorker, choose_run_mode

__all__ = [
    # Discovery
    "DeviceDiscovery",
    "DiscoverySummary",
    # Selection
    "DeviceSelector",
    "parse_device_ids",
    # Partitioning
    "ShardPartitioner",
    "PartitionResult",
    "resolve_shard_mode",
    # Ports
    "PortAllocator",
    "PortClaimSet",
    # Worker
    "ShardWorker",
    "ShardRunMode",
    "choose_run_mode",
    # Coordination
    "ShardExecutionCoordinator",
    "ResultAggregator",
    "AggregateResult",
    "merge_summaries",
    "TestRunner",
    # Interfaces
    "Session",
    "SessionFactory",
    "FlowRunner",
    "DeviceController",
    "Reporter",
    # Types
    "DeviceInfo",
    "DeviceType",
    "ExecutionPlan",
    "FlowRef",
    "FlowSequence",
    "FlowStatus",
    "Platform",
    "PortRange",
    "ReportFormat",
    "RunnerConfig",
    "SessionConfig",
    "ShardMode",
    "ShardOutcome",
    "SuiteFlowResult",
    "SuiteResult",
    "TestExecutionSummary",
    "WorkerConfig",
    "WorkspaceConfig",
    # Errors
    "FlowshardError",
    "ConfigurationError",
    "ResourceShortageError",
    "InsufficientDevicesError",
    "PortAllocationError",
    "DeviceNotConnectedError",
    "SessionInitializationError",
    "ShardExecutionError",
]
