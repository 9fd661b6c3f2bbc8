"""
Cloud upload status polling for Flowshard.
"""

from flowshard.cloud.client import CloudClient
from flowshard.cloud.completion import (
    cloud_run_finished,
    create_suite_result,
    poll_exit_code,
    upload_exit_code,
)
from flowshard.cloud.errors import CloudApiError, CloudError, CloudPollingError
from flowshard.cloud.models import FlowResult, RunningFlow, RunningFlows, UploadStatus
from flowshard.cloud.poller import CloudUploadPoller, PollerConfig, PollResult, PollState

__all__ = [
    # Client
    "CloudClient",
    # Poller
    "CloudUploadPoller",
    "PollerConfig",
    "PollResult",
    "PollState",
    # Completion
    "upload_exit_code",
    "poll_exit_code",
    "create_suite_result",
    "cloud_run_finished",
    # Models
    "FlowResult",
    "UploadStatus",
    "RunningFlow",
    "RunningFlows",
    # Errors
    "CloudError",
    "CloudApiError",
    "CloudPollingError",
]
