"""
Flowshard - sharded execution of mobile and web test flows

Splits a plan of flows across connected Android, iOS and web devices, runs
the shards concurrently and folds their results into one exit code. Also
waits for cloud uploads to complete.
"""

from .executor import (
    ExecutionPlan,
    FlowRef,
    FlowSequence,
    RunnerConfig,
    TestRunner,
    FlowshardError,
    ConfigurationError,
    InsufficientDevicesError,
    DeviceNotConnectedError,
    ShardExecutionError,
)
from .cloud import CloudClient, CloudUploadPoller, PollerConfig, poll_exit_code
from .events import EventSink, RecordingEventSink

__version__ = "0.1.0"

__all__ = [
    # Local runs
    "TestRunner",
    "RunnerConfig",
    "ExecutionPlan",
    "FlowRef",
    "FlowSequence",
    # Cloud
    "CloudClient",
    "CloudUploadPoller",
    "PollerConfig",
    "poll_exit_code",
    # Events
    "EventSink",
    "RecordingEventSink",
    # Errors
    "FlowshardError",
    "ConfigurationError",
    "InsufficientDevicesError",
    "DeviceNotConnectedError",
    "ShardExecutionError",
]
