"""
Error definitions for the Shard Execution Engine.

Contains custom exception classes for planning, allocation and shard execution errors.
"""

from typing import Optional


class FlowshardError(Exception):
    """Base exception for orchestrator errors."""
    pass


class ConfigurationError(FlowshardError):
    """Raised for invalid or contradictory options, before any device work."""
    pass


class ResourceShortageError(FlowshardError):
    """Base exception for running out of devices or ports."""
    pass


class InsufficientDevicesError(ResourceShortageError):
    """Raised when fewer devices are connected than shards were requested."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.missing = required - available
        super().__init__(
            f"Not enough devices connected ({available}) to run the requested "
            f"number of shards ({required}). Missing {self.missing} device(s)."
        )


class PortAllocationError(ResourceShortageError):
    """Raised when every port in the range is already claimed."""

    def __init__(self, low: int, high: int):
        self.low = low
        self.high = high
        super().__init__(f"No available ports found in range {low}-{high}")


class DeviceNotConnectedError(FlowshardError):
    """Raised when an explicitly requested device is not connected."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device {device_id} was requested, but it is not connected.")


class SessionInitializationError(FlowshardError):
    """Raised when a device session cannot be opened."""

    def __init__(
        self,
        device_id: str,
        port: int,
        message: str,
        cause: Optional[Exception] = None,
    ):
        self.device_id = device_id
        self.port = port
        self.cause = cause
        super().__init__(
            f"Session initialization failed for device {device_id} on port {port}: {message}"
        )


class ShardExecutionError(FlowshardError):
    """Raised after the fan-in join when a shard task failed."""

    def __init__(
        self,
        shard_index: int,
        device_id: Optional[str],
        single_flow: bool,
        cause: Optional[BaseException] = None,
    ):
        self.shard_index = shard_index
        self.device_id = device_id
        self.single_flow = single_flow
        self.cause = cause
        kind = "Flow" if single_flow else "Workspace"
        super().__init__(
            f"{kind} run failed on shard {shard_index + 1} "
            f"(device {device_id}): {cause}"
        )
