"""
Type definitions for the Shard Execution Engine.

Contains enums, dataclasses, and type definitions used throughout the executor module.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from flowshard.executor.errors import ConfigurationError


DEFAULT_DRIVER_PORT = 7001
PORT_RANGE_START = 7001
PORT_RANGE_END = 7128

WEB_DEVICE_ID = "chromium"


class Platform(str, Enum):
    """Device platform enumeration."""
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"

    @classmethod
    def from_string(cls, value: str) -> "Platform":
        """Parse a platform name, case insensitive."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unknown platform: {value}")


class DeviceType(str, Enum):
    """Kind of connected device."""
    EMULATOR = "emulator"
    SIMULATOR = "simulator"
    REAL = "real"
    BROWSER = "browser"


class ShardMode(str, Enum):
    """How flows are distributed across shards."""
    SPLIT = "split"     # Partition flows across shards
    ALL = "all"         # Every shard runs every flow
    NONE = "none"       # No sharding option given


class ReportFormat(str, Enum):
    """Report formats understood by the external reporter."""
    NOOP = "noop"
    JUNIT = "junit"
    HTML = "html"

    @property
    def file_extension(self) -> Optional[str]:
        return {
            ReportFormat.NOOP: None,
            ReportFormat.JUNIT: ".xml",
            ReportFormat.HTML: ".html",
        }[self]


class FlowStatus(str, Enum):
    """Flow and upload status enumeration."""
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    INSTALLING = "INSTALLING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    CANCELED = "CANCELED"
    STOPPED = "STOPPED"
    WARNING = "WARNING"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    FlowStatus.CANCELED,
    FlowStatus.STOPPED,
    FlowStatus.SUCCESS,
    FlowStatus.ERROR,
})


@dataclass
class DeviceInfo:
    """A connected device as reported by discovery."""
    device_id: str                                   # UDID, serial or "chromium"
    platform: Platform
    device_type: DeviceType = DeviceType.REAL
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Execution plan
# =============================================================================

@dataclass(frozen=True)
class FlowRef:
    """Reference to a single flow file."""
    path: Path
    is_web_flow: bool = False

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class FlowSequence:
    """Flows that must run one after another, in order."""
    flows: Tuple[FlowRef, ...] = ()
    continue_on_failure: Optional[bool] = None


@dataclass(frozen=True)
class WorkspaceConfig:
    """Workspace level settings produced by the planner."""
    test_output_dir: Optional[str] = None
    execution_order: Optional[Tuple[str, ...]] = None
    extra: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Immutable description of what to run.

    Attributes:
        flows_to_run: Flows that may run in any order, on any shard.
        sequence: Flows that must run sequentially on a single shard.
        workspace_config: Workspace configuration.
    """
    flows_to_run: Tuple[FlowRef, ...] = ()
    sequence: FlowSequence = field(default_factory=FlowSequence)
    workspace_config: WorkspaceConfig = field(default_factory=WorkspaceConfig)

    @classmethod
    def of(
        cls,
        flows_to_run: List[FlowRef],
        sequence: Optional[List[FlowRef]] = None,
        workspace_config: Optional[WorkspaceConfig] = None,
    ) -> "ExecutionPlan":
        """Build a plan from plain lists."""
        return cls(
            flows_to_run=tuple(flows_to_run),
            sequence=FlowSequence(flows=tuple(sequence or ())),
            workspace_config=workspace_config or WorkspaceConfig(),
        )

    @property
    def is_sequence_only(self) -> bool:
        return bool(self.sequence.flows) and not self.flows_to_run

    @property
    def flow_count(self) -> int:
        if self.is_sequence_only:
            return len(self.sequence.flows)
        return len(self.flows_to_run)

    def includes_web_flow(self) -> bool:
        return any(f.is_web_flow for f in self.flows_to_run) or any(
            f.is_web_flow for f in self.sequence.flows
        )

    def all_web_flows(self) -> bool:
        if not self.flows_to_run and not self.sequence.flows:
            return False
        return all(f.is_web_flow for f in self.flows_to_run) and all(
            f.is_web_flow for f in self.sequence.flows
        )

    def copy(self, flows_to_run: Optional[Tuple[FlowRef, ...]] = None) -> "ExecutionPlan":
        """Return an independent copy, optionally with a different flow list."""
        if flows_to_run is None:
            flows_to_run = tuple(self.flows_to_run)
        return replace(self, flows_to_run=flows_to_run)


# =============================================================================
# Results
# =============================================================================

@dataclass
class SuiteFlowResult:
    """Result of one flow inside a suite."""
    name: str
    status: FlowStatus
    file_name: Optional[str] = None
    failure: Optional[str] = None
    duration_ms: Optional[int] = None
    start_time: Optional[int] = None


@dataclass
class SuiteResult:
    """Result of one suite, typically one shard."""
    passed: bool
    flows: List[SuiteFlowResult] = field(default_factory=list)
    duration_ms: Optional[int] = None
    start_time: Optional[int] = None
    device_name: Optional[str] = None


@dataclass
class TestExecutionSummary:
    """Structured summary produced by a multi-flow run."""
    __test__ = False

    passed: bool
    suites: List[SuiteResult] = field(default_factory=list)
    passed_count: Optional[int] = None
    total_tests: Optional[int] = None


@dataclass
class ShardOutcome:
    """
    Outcome of a single shard.

    ``None`` fields mean the shard produced no structured summary
    (single-flow and continuous runs).
    """
    passed_count: Optional[int] = None
    total_count: Optional[int] = None
    summary: Optional[TestExecutionSummary] = None


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class PortRange:
    """Inclusive range of driver host ports available to shards."""
    low: int = PORT_RANGE_START
    high: int = PORT_RANGE_END

    def __post_init__(self) -> None:
        if not (1 <= self.low <= self.high <= 65535):
            raise ConfigurationError(
                f"Invalid port range {self.low}-{self.high}"
            )

    @property
    def size(self) -> int:
        return self.high - self.low + 1

    def ports(self) -> List[int]:
        return list(range(self.low, self.high + 1))


@dataclass
class WorkerConfig:
    """Shard worker configuration."""
    setup_timeout_ms: int = 120000
    teardown_timeout_ms: int = 10000

    def __post_init__(self) -> None:
        """Validate worker configuration."""
        if self.setup_timeout_ms <= 0:
            raise ConfigurationError(
                f"setup_timeout_ms must be positive, got {self.setup_timeout_ms}"
            )
        if self.teardown_timeout_ms <= 0:
            raise ConfigurationError(
                f"teardown_timeout_ms must be positive, got {self.teardown_timeout_ms}"
            )


@dataclass
class RunnerConfig:
    """
    Options for a local test run.

    Mirrors the options of the ``test`` command; parsing them from the
    command line happens elsewhere.
    """
    flow_inputs: List[Path] = field(default_factory=list)
    shard_split: Optional[int] = None
    shard_all: Optional[int] = None
    legacy_shards: Optional[int] = None
    device_ids: Optional[str] = None
    platform: Optional[str] = None
    driver_host_port: Optional[int] = None
    continuous: bool = False
    report_format: ReportFormat = ReportFormat.NOOP
    test_suite_name: Optional[str] = None
    output: Optional[Path] = None
    app_file: Optional[Path] = None
    config_file: Optional[Path] = None
    headless: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    port_range: PortRange = field(default_factory=PortRange)
    worker: WorkerConfig = field(default_factory=WorkerConfig)

    def __post_init__(self) -> None:
        """Validate runner configuration."""
        if self.shard_split is not None and self.shard_all is not None:
            raise ConfigurationError(
                "Options --shard-split and --shard-all are mutually exclusive."
            )
        for name in ("shard_split", "shard_all", "legacy_shards"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.driver_host_port is not None and not (1 <= self.driver_host_port <= 65535):
            raise ConfigurationError(
                f"driver_host_port out of range: {self.driver_host_port}"
            )
        if self.platform is not None:
            Platform.from_string(self.platform)

    def validate_files(self) -> None:
        """Check that referenced files exist."""
        if self.app_file is not None and not Path(self.app_file).exists():
            raise ConfigurationError(
                f"App file does not exist: {Path(self.app_file).absolute()}"
            )
        if self.config_file is not None and not Path(self.config_file).exists():
            raise ConfigurationError(
                f"The config file {Path(self.config_file).absolute()} does not exist."
            )

    @property
    def is_single_file(self) -> bool:
        """True when exactly one flow file (not a folder) was given."""
        return len(self.flow_inputs) == 1 and not Path(self.flow_inputs[0]).is_dir()


@dataclass
class SessionConfig:
    """Settings handed to the session factory for every shard."""
    platform: Optional[str] = None
    headless: bool = False
    app_file: Optional[Path] = None
    execution_plan: Optional[ExecutionPlan] = None
    started_at: datetime = field(default_factory=datetime.now)
